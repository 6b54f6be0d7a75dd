"""DynamoDB-backed attempt store for multi-instance deployments.

Table Schema:
    PK: attempt_id (String)
    Attributes: one attribute per DeliveryAttempt field. ``next_retry_at``
        and ``claim_expires_at`` are epoch seconds (Number) so conditions
        can compare them; ``target`` and ``payload`` are JSON strings.
    GSI: status-next_retry_at-index (status + next_retry_at), sparse
    GSI: status-updated_at-index (status + updated_at)
"""

import json
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult
from integrations.aws import dynamodb
from modules.delivery.errors import AttemptStoreError
from modules.delivery.models import Channel, DeliveryAttempt, DeliveryStatus, utc_now
from modules.delivery.retry.store import FAILURE_STATUSES, claim_changes

logger = get_module_logger()

CONDITION_FAILED = "ConditionalCheckFailedException"
DUE_INDEX = "status-next_retry_at-index"
UPDATED_INDEX = "status-updated_at-index"

EPOCH_FIELDS = frozenset({"next_retry_at", "claim_expires_at"})
DATETIME_FIELDS = frozenset({"scheduled_at", "sent_at", "created_at", "updated_at"})
INT_FIELDS = frozenset({"attempt_number", "max_retries", "response_code"})
JSON_FIELDS = frozenset({"target", "payload"})

# The attempt_number guard rejects a claim computed from a stale read
CLAIM_CONDITION = (
    "((#status = :retrying AND next_retry_at <= :now"
    " AND (attribute_not_exists(claim_worker) OR claim_expires_at < :now))"
    " OR (#status = :pending AND claim_expires_at < :now))"
    " AND #attempt_number = :read_number"
)


def _encode(name: str, value: Any) -> Dict[str, str]:
    if name in EPOCH_FIELDS:
        return {"N": repr(value.timestamp())}
    if name in DATETIME_FIELDS:
        return {"S": value.isoformat()}
    if name in INT_FIELDS:
        return {"N": str(value)}
    if name in JSON_FIELDS:
        return {"S": json.dumps(value, sort_keys=True)}
    if isinstance(value, (Channel, DeliveryStatus)):
        return {"S": value.value}
    return {"S": str(value)}


def _decode(name: str, attr: Dict[str, str]) -> Any:
    if name in EPOCH_FIELDS:
        return datetime.fromtimestamp(float(attr["N"]), tz=timezone.utc)
    if name in DATETIME_FIELDS:
        return datetime.fromisoformat(attr["S"])
    if name in INT_FIELDS:
        return int(attr["N"])
    if name in JSON_FIELDS:
        return json.loads(attr["S"])
    if name == "channel":
        return Channel(attr["S"])
    if name == "status":
        return DeliveryStatus(attr["S"])
    return attr["S"]


def attempt_to_item(attempt: DeliveryAttempt) -> Dict[str, Dict[str, str]]:
    item = {}
    for f in fields(DeliveryAttempt):
        value = getattr(attempt, f.name)
        if value is None:
            continue
        key = "attempt_id" if f.name == "id" else f.name
        item[key] = _encode(f.name, value)
    return item


def item_to_attempt(item: Dict[str, Dict[str, str]]) -> DeliveryAttempt:
    values = {}
    for f in fields(DeliveryAttempt):
        key = "attempt_id" if f.name == "id" else f.name
        if key in item:
            values[f.name] = _decode(f.name, item[key])
    return DeliveryAttempt(**values)


def _update_expression(changes: Dict[str, Any]):
    """Build SET/REMOVE clauses; None values remove the attribute."""
    sets, removes = [], []
    names: Dict[str, str] = {}
    values: Dict[str, Dict[str, str]] = {}
    for i, (name, value) in enumerate(changes.items()):
        names[f"#f{i}"] = name
        if value is None:
            removes.append(f"#f{i}")
        else:
            sets.append(f"#f{i} = :v{i}")
            values[f":v{i}"] = _encode(name, value)
    expression = ""
    if sets:
        expression += "SET " + ", ".join(sets)
    if removes:
        expression += " REMOVE " + ", ".join(removes)
    return expression.strip(), names, values


class DynamoDBAttemptStore:
    """AttemptStore using conditional writes for every transition."""

    def __init__(self, table_name: str = "delivery-attempts"):
        self.table_name = table_name
        logger.info("dynamodb_attempt_store_initialized", table_name=table_name)

    def _raise(self, action: str, result: OperationResult) -> None:
        logger.error(
            "dynamodb_attempt_store_failed",
            action=action,
            error=result.message,
            error_code=result.error_code,
        )
        raise AttemptStoreError(f"Attempt store {action} failed: {result.message}", response=result)

    def save(self, attempt: DeliveryAttempt) -> None:
        result = dynamodb.put_item(table_name=self.table_name, Item=attempt_to_item(attempt))
        if not result.is_success:
            self._raise("save", result)

    def get(self, attempt_id: str) -> Optional[DeliveryAttempt]:
        result = dynamodb.get_item(
            table_name=self.table_name,
            Key={"attempt_id": {"S": attempt_id}},
            ConsistentRead=True,
        )
        if not result.is_success:
            self._raise("get", result)
        item = (result.data or {}).get("Item")
        return item_to_attempt(item) if item else None

    def _conditional_update(
        self,
        attempt_id: str,
        changes: Dict[str, Any],
        condition: str,
        condition_names: Dict[str, str],
        condition_values: Dict[str, Dict[str, str]],
    ) -> bool:
        expression, names, values = _update_expression(changes)
        result = dynamodb.update_item(
            table_name=self.table_name,
            Key={"attempt_id": {"S": attempt_id}},
            UpdateExpression=expression,
            ConditionExpression=condition,
            ExpressionAttributeNames={**names, **condition_names},
            ExpressionAttributeValues={**values, **condition_values},
        )
        if result.is_success:
            return True
        if result.error_code == CONDITION_FAILED:
            return False
        self._raise("update", result)
        return False

    def compare_and_set(
        self, attempt_id: str, expected_status: DeliveryStatus, **changes: Any
    ) -> bool:
        changes.setdefault("updated_at", utc_now())
        return self._conditional_update(
            attempt_id,
            changes,
            condition="#status = :expected",
            condition_names={"#status": "status"},
            condition_values={":expected": {"S": expected_status.value}},
        )

    def claim(self, attempt_id: str, worker_id: str, lease_seconds: int, now: datetime) -> bool:
        attempt = self.get(attempt_id)
        if attempt is None:
            return False
        claimed = self._conditional_update(
            attempt_id,
            claim_changes(attempt, worker_id, lease_seconds, now),
            condition=CLAIM_CONDITION,
            condition_names={"#status": "status", "#attempt_number": "attempt_number"},
            condition_values={
                ":read_number": {"N": str(attempt.attempt_number)},
                ":retrying": {"S": DeliveryStatus.RETRYING.value},
                ":pending": {"S": DeliveryStatus.PENDING.value},
                ":now": {"N": repr(now.timestamp())},
            },
        )
        if not claimed:
            logger.debug("attempt_claim_rejected", attempt_id=attempt_id, worker_id=worker_id)
        return claimed

    def _query_status(
        self,
        index: str,
        status: DeliveryStatus,
        limit: int,
        key_condition: str = "#status = :status",
        values: Optional[Dict[str, Dict[str, str]]] = None,
        **kwargs,
    ) -> List[DeliveryAttempt]:
        result = dynamodb.query(
            table_name=self.table_name,
            IndexName=index,
            KeyConditionExpression=key_condition,
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={":status": {"S": status.value}, **(values or {})},
            Limit=limit,
            **kwargs,
        )
        if not result.is_success:
            self._raise("query", result)
        return [item_to_attempt(item) for item in (result.data or {}).get("Items", [])]

    def fetch_due(self, now: datetime, limit: int) -> List[DeliveryAttempt]:
        due: List[DeliveryAttempt] = []
        for status in (DeliveryStatus.RETRYING, DeliveryStatus.PENDING):
            due.extend(
                self._query_status(
                    DUE_INDEX,
                    status,
                    limit,
                    key_condition="#status = :status AND next_retry_at <= :now",
                    values={":now": {"N": repr(now.timestamp())}},
                )
            )
        due.sort(key=lambda a: a.next_retry_at)
        return due[:limit]

    def list_failures(self, limit: int) -> List[DeliveryAttempt]:
        failures: List[DeliveryAttempt] = []
        for status in FAILURE_STATUSES:
            failures.extend(
                self._query_status(UPDATED_INDEX, status, limit, ScanIndexForward=False)
            )
        failures.sort(key=lambda a: a.updated_at, reverse=True)
        return failures[:limit]
