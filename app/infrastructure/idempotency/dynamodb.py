"""DynamoDB idempotency cache implementation."""

import json
import time
from typing import Any, Dict, Optional

from infrastructure.idempotency.cache import IdempotencyCache
from infrastructure.logging import get_module_logger
from integrations.aws.dynamodb import get_item, put_item

logger = get_module_logger()

IDEMPOTENCY_TABLE = "delivery-idempotency"
PARTITION_KEY = "idempotency_key"


class DynamoDBCache(IdempotencyCache):
    """DynamoDB-backed idempotency cache shared by all relay instances.

    Table schema:
    - PK: idempotency_key (string)
    - Attributes: response_json, ttl (DynamoDB TTL), created_at

    Expired items may linger until DynamoDB's TTL sweeper removes them, so
    ``get`` also checks the ttl attribute.
    """

    def __init__(self, table_name: str = IDEMPOTENCY_TABLE, ttl_seconds: int = 3600):
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds
        logger.info(
            "initialized_dynamodb_idempotency_cache",
            table_name=table_name,
            ttl_seconds=ttl_seconds,
        )

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        result = get_item(
            table_name=self.table_name,
            Key={PARTITION_KEY: {"S": key}},
        )
        if not result.is_success:
            logger.warning("idempotency_cache_get_failed", key=key, error=result.message)
            return None

        item = (result.data or {}).get("Item")
        if not item:
            logger.debug("idempotency_cache_miss", key=key)
            return None

        if int(item.get("ttl", {}).get("N", "0")) <= int(time.time()):
            logger.debug("idempotency_cache_expired", key=key)
            return None

        try:
            cached = json.loads(item["response_json"]["S"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error("idempotency_cache_corrupt_entry", key=key, error=str(e))
            return None

        logger.debug("idempotency_cache_hit", key=key)
        return cached

    def set(
        self, key: str, response: Dict[str, Any], ttl_seconds: Optional[int] = None
    ) -> None:
        if ttl_seconds is None:
            ttl_seconds = self.ttl_seconds

        try:
            response_json = json.dumps(response, default=str)
        except (TypeError, ValueError) as e:
            logger.error("idempotency_cache_serialization_error", key=key, error=str(e))
            return

        now = int(time.time())
        result = put_item(
            table_name=self.table_name,
            Item={
                PARTITION_KEY: {"S": key},
                "response_json": {"S": response_json},
                "ttl": {"N": str(now + ttl_seconds)},
                "created_at": {"N": str(now)},
            },
        )
        if result.is_success:
            logger.debug("idempotency_cache_set_success", key=key, ttl_seconds=ttl_seconds)
        else:
            logger.error("idempotency_cache_set_failed", key=key, error=result.message)

    def clear(self) -> None:
        # Items expire through DynamoDB TTL; a table scan is never issued here.
        logger.warning("idempotency_cache_clear_ignored", backend="dynamodb")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "dynamodb",
            "table_name": self.table_name,
            "ttl_seconds": self.ttl_seconds,
            "partition_key": PARTITION_KEY,
        }
