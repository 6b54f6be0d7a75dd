"""Unit tests for the idempotency cache factory."""

import pytest

from infrastructure.configuration import DeliverySettings, Settings
from infrastructure.idempotency.dynamodb import DynamoDBCache
from infrastructure.idempotency.factory import create_cache
from infrastructure.idempotency.memory import InMemoryCache

pytestmark = pytest.mark.unit


class TestCreateCache:
    """Tests for create_cache()."""

    def test_memory_backend(self):
        cache = create_cache(Settings(delivery=DeliverySettings(DELIVERY_BACKEND="memory")))

        assert isinstance(cache, InMemoryCache)

    def test_dynamodb_backend(self):
        cache = create_cache(Settings(delivery=DeliverySettings(DELIVERY_BACKEND="dynamodb")))

        assert isinstance(cache, DynamoDBCache)

    def test_unknown_backend_raises(self):
        with pytest.raises(ValueError, match="Unknown delivery backend"):
            create_cache(Settings(delivery=DeliverySettings(DELIVERY_BACKEND="redis")))
