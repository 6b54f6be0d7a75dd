"""Append-only delivery history (audit log).

Every attempt outcome, suppression decision, exhaustion and operator
resolution is appended here before the coordinator returns. A failed write
raises HistoryUnavailableError: callers must not report a delivery whose
audit record was lost.
"""

import threading
from typing import Dict, List, Protocol

from infrastructure.logging import get_module_logger
from integrations.aws import dynamodb
from modules.delivery.errors import HistoryUnavailableError
from modules.delivery.models import HistoryEntry

logger = get_module_logger()


class DeliveryHistory(Protocol):
    def append(self, entry: HistoryEntry) -> None: ...

    def for_event(self, event_id: str) -> List[HistoryEntry]: ...

    def for_attempt(self, attempt_id: str) -> List[HistoryEntry]: ...


def _log_entry(entry: HistoryEntry) -> None:
    logger.info(
        "delivery_history_recorded",
        entry_id=entry.id,
        event_id=entry.event_id,
        attempt_id=entry.attempt_id,
        channel=entry.channel.value if entry.channel else None,
        target_ref=entry.target_ref,
        status=entry.status.value,
        attempt_number=entry.attempt_number,
        response_code=entry.response_code,
        error_code=entry.error_code,
    )


class InMemoryDeliveryHistory:
    def __init__(self):
        self._entries: List[HistoryEntry] = []
        self._ids: Dict[str, int] = {}
        self._lock = threading.Lock()

    def append(self, entry: HistoryEntry) -> None:
        with self._lock:
            if entry.id in self._ids:
                raise HistoryUnavailableError(f"History entry {entry.id} already exists")
            self._ids[entry.id] = len(self._entries)
            self._entries.append(entry)
        _log_entry(entry)

    def for_event(self, event_id: str) -> List[HistoryEntry]:
        with self._lock:
            return [e for e in self._entries if e.event_id == event_id]

    def for_attempt(self, attempt_id: str) -> List[HistoryEntry]:
        with self._lock:
            return [e for e in self._entries if e.attempt_id == attempt_id]

    def all(self) -> List[HistoryEntry]:
        with self._lock:
            return list(self._entries)


class DynamoDBDeliveryHistory:
    """History table keyed by ``entry_id`` with ``event_id-index`` and
    ``attempt_id-index`` global secondary indexes."""

    EVENT_INDEX = "event_id-index"
    ATTEMPT_INDEX = "attempt_id-index"

    def __init__(self, table_name: str = "delivery-history"):
        self.table_name = table_name

    def append(self, entry: HistoryEntry) -> None:
        item = {
            "entry_id": {"S": entry.id},
            "event_id": {"S": entry.event_id},
            "recorded_at": {"S": entry.recorded_at.isoformat()},
            "status": {"S": entry.status.value},
            "document": {"S": entry.model_dump_json()},
        }
        if entry.attempt_id:
            item["attempt_id"] = {"S": entry.attempt_id}
        result = dynamodb.put_item(
            table_name=self.table_name,
            Item=item,
            ConditionExpression="attribute_not_exists(entry_id)",
        )
        if not result.is_success:
            raise HistoryUnavailableError(
                f"Could not append history entry {entry.id}: {result.message}",
                response=result,
            )
        _log_entry(entry)

    def _query(self, index: str, key: str, value: str) -> List[HistoryEntry]:
        result = dynamodb.query(
            table_name=self.table_name,
            IndexName=index,
            KeyConditionExpression=f"{key} = :value",
            ExpressionAttributeValues={":value": {"S": value}},
        )
        if not result.is_success:
            raise HistoryUnavailableError(
                f"Could not read history for {key}={value}: {result.message}",
                response=result,
            )
        entries = [
            HistoryEntry.model_validate_json(item["document"]["S"])
            for item in (result.data or {}).get("Items", [])
        ]
        return sorted(entries, key=lambda e: e.recorded_at)

    def for_event(self, event_id: str) -> List[HistoryEntry]:
        return self._query(self.EVENT_INDEX, "event_id", event_id)

    def for_attempt(self, attempt_id: str) -> List[HistoryEntry]:
        return self._query(self.ATTEMPT_INDEX, "attempt_id", attempt_id)
