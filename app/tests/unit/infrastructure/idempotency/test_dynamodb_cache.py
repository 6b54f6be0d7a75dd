"""Unit tests for the DynamoDB idempotency cache."""

import json
import time
from unittest.mock import patch

import pytest

from infrastructure.idempotency.dynamodb import PARTITION_KEY, DynamoDBCache
from infrastructure.operations.result import OperationResult

pytestmark = pytest.mark.unit


def _item(response, ttl):
    return {
        "Item": {
            PARTITION_KEY: {"S": "key"},
            "response_json": {"S": json.dumps(response)},
            "ttl": {"N": str(ttl)},
        }
    }


class TestDynamoDBCacheGet:
    """Tests for DynamoDBCache.get()."""

    @patch("infrastructure.idempotency.dynamodb.get_item")
    def test_returns_cached_response(self, mock_get_item):
        mock_get_item.return_value = OperationResult.success(
            data=_item({"deduplicated": False}, int(time.time()) + 600)
        )

        cache = DynamoDBCache(table_name="idem")

        assert cache.get("key") == {"deduplicated": False}
        mock_get_item.assert_called_once_with(
            table_name="idem", Key={PARTITION_KEY: {"S": "key"}}
        )

    @patch("infrastructure.idempotency.dynamodb.get_item")
    def test_expired_item_is_a_miss(self, mock_get_item):
        mock_get_item.return_value = OperationResult.success(
            data=_item({"deduplicated": False}, int(time.time()) - 1)
        )

        assert DynamoDBCache().get("key") is None

    @patch("infrastructure.idempotency.dynamodb.get_item")
    def test_missing_item_is_a_miss(self, mock_get_item):
        mock_get_item.return_value = OperationResult.success(data={})

        assert DynamoDBCache().get("key") is None

    @patch("infrastructure.idempotency.dynamodb.get_item")
    def test_backend_failure_is_a_miss(self, mock_get_item):
        mock_get_item.return_value = OperationResult.transient_error("throttled")

        assert DynamoDBCache().get("key") is None


class TestDynamoDBCacheSet:
    """Tests for DynamoDBCache.set()."""

    @patch("infrastructure.idempotency.dynamodb.put_item")
    def test_writes_json_with_ttl(self, mock_put_item):
        mock_put_item.return_value = OperationResult.success()

        DynamoDBCache(table_name="idem").set("key", {"a": 1}, ttl_seconds=120)

        kwargs = mock_put_item.call_args.kwargs
        assert kwargs["table_name"] == "idem"
        item = kwargs["Item"]
        assert item[PARTITION_KEY] == {"S": "key"}
        assert json.loads(item["response_json"]["S"]) == {"a": 1}
        assert int(item["ttl"]["N"]) - int(item["created_at"]["N"]) == 120

    @patch("infrastructure.idempotency.dynamodb.put_item")
    def test_default_ttl_is_used(self, mock_put_item):
        mock_put_item.return_value = OperationResult.success()

        DynamoDBCache(ttl_seconds=45).set("key", {"a": 1})

        item = mock_put_item.call_args.kwargs["Item"]
        assert int(item["ttl"]["N"]) - int(item["created_at"]["N"]) == 45
