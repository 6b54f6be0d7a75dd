"""Delivery attempt store protocol and in-memory implementation."""

import copy
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from infrastructure.logging import get_module_logger
from modules.delivery.models import DeliveryAttempt, DeliveryStatus, utc_now

logger = get_module_logger()

FAILURE_STATUSES = (DeliveryStatus.FAILED, DeliveryStatus.EXHAUSTED)


class AttemptStore(Protocol):
    """Durable record of delivery attempts.

    Every status transition goes through ``compare_and_set`` or ``claim``,
    both atomic, so concurrent workers never double-process an attempt.
    Implementations raise AttemptStoreError when the backend is unavailable.
    """

    def save(self, attempt: DeliveryAttempt) -> None:
        """Insert or overwrite an attempt."""
        ...

    def get(self, attempt_id: str) -> Optional[DeliveryAttempt]:
        """Return a copy of the attempt, or None."""
        ...

    def compare_and_set(
        self, attempt_id: str, expected_status: DeliveryStatus, **changes: Any
    ) -> bool:
        """Apply ``changes`` only if the stored status is ``expected_status``."""
        ...

    def fetch_due(self, now: datetime, limit: int) -> List[DeliveryAttempt]:
        """Attempts whose retry is due, or whose claim lease expired."""
        ...

    def claim(self, attempt_id: str, worker_id: str, lease_seconds: int, now: datetime) -> bool:
        """Move a due RETRYING attempt to PENDING for ``worker_id``.

        Also counts the upcoming try in ``attempt_number``.
        """
        ...

    def list_failures(self, limit: int) -> List[DeliveryAttempt]:
        """FAILED and EXHAUSTED attempts, most recently updated first."""
        ...


def claim_changes(
    attempt: DeliveryAttempt, worker_id: str, lease_seconds: int, now: datetime
) -> Dict[str, Any]:
    """Fields a successful claim writes.

    ``next_retry_at`` is set to the lease expiry so an attempt orphaned by a
    crashed worker becomes due again once the lease runs out.
    """
    expires = now + timedelta(seconds=lease_seconds)
    return {
        "status": DeliveryStatus.PENDING,
        "attempt_number": attempt.attempt_number + 1,
        "claim_worker": worker_id,
        "claim_expires_at": expires,
        "next_retry_at": expires,
        "updated_at": now,
    }


def is_claimable(attempt: DeliveryAttempt, now: datetime) -> bool:
    if attempt.status == DeliveryStatus.RETRYING:
        if attempt.next_retry_at is None or attempt.next_retry_at > now:
            return False
        return attempt.claim_worker is None or (
            attempt.claim_expires_at is not None and attempt.claim_expires_at < now
        )
    if attempt.status == DeliveryStatus.PENDING:
        return attempt.claim_expires_at is not None and attempt.claim_expires_at < now
    return False


class InMemoryAttemptStore:
    """Lock-guarded in-memory AttemptStore for development and tests."""

    def __init__(self):
        self._attempts: Dict[str, DeliveryAttempt] = {}
        self._lock = threading.Lock()

    def save(self, attempt: DeliveryAttempt) -> None:
        with self._lock:
            self._attempts[attempt.id] = copy.deepcopy(attempt)

    def get(self, attempt_id: str) -> Optional[DeliveryAttempt]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            return copy.deepcopy(attempt) if attempt else None

    def compare_and_set(
        self, attempt_id: str, expected_status: DeliveryStatus, **changes: Any
    ) -> bool:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None or attempt.status != expected_status:
                return False
            for name, value in changes.items():
                setattr(attempt, name, value)
            if "updated_at" not in changes:
                attempt.updated_at = utc_now()
            return True

    def fetch_due(self, now: datetime, limit: int) -> List[DeliveryAttempt]:
        with self._lock:
            due = [
                a
                for a in self._attempts.values()
                if a.status in (DeliveryStatus.RETRYING, DeliveryStatus.PENDING)
                and a.next_retry_at is not None
                and a.next_retry_at <= now
                and is_claimable(a, now)
            ]
            due.sort(key=lambda a: a.next_retry_at)
            return [copy.deepcopy(a) for a in due[:limit]]

    def claim(self, attempt_id: str, worker_id: str, lease_seconds: int, now: datetime) -> bool:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None or not is_claimable(attempt, now):
                logger.debug("attempt_claim_rejected", attempt_id=attempt_id, worker_id=worker_id)
                return False
            for name, value in claim_changes(attempt, worker_id, lease_seconds, now).items():
                setattr(attempt, name, value)
            return True

    def list_failures(self, limit: int) -> List[DeliveryAttempt]:
        with self._lock:
            failures = [a for a in self._attempts.values() if a.status in FAILURE_STATUSES]
        failures.sort(key=lambda a: a.updated_at, reverse=True)
        return [copy.deepcopy(a) for a in failures[:limit]]

    def all(self) -> List[DeliveryAttempt]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._attempts.values()]
