"""Idempotency cache factory."""

from typing import TYPE_CHECKING

from infrastructure.idempotency.cache import IdempotencyCache
from infrastructure.idempotency.dynamodb import DynamoDBCache
from infrastructure.idempotency.memory import InMemoryCache
from infrastructure.logging import get_module_logger

if TYPE_CHECKING:
    from infrastructure.configuration import Settings

logger = get_module_logger()


def create_cache(settings: "Settings") -> IdempotencyCache:
    """Create the idempotency cache matching the delivery store backend.

    Args:
        settings: Application settings

    Returns:
        DynamoDBCache when ``DELIVERY_BACKEND=dynamodb``, else InMemoryCache

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.delivery.backend
    if backend == "memory":
        cache: IdempotencyCache = InMemoryCache(
            max_entries=settings.idempotency.IDEMPOTENCY_MAX_ENTRIES
        )
    elif backend == "dynamodb":
        cache = DynamoDBCache(ttl_seconds=settings.idempotency.IDEMPOTENCY_TTL_SECONDS)
    else:
        raise ValueError(f"Unknown delivery backend: {backend}")

    logger.info("initialized_idempotency_cache", backend=backend)
    return cache
