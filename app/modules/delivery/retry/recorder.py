"""Attempt state machine shared by the coordinator and the scheduler.

    PENDING -> SENT                          success
    PENDING -> FAILED                        any failure
    FAILED  -> RETRYING                      retryable, budget left
    FAILED  -> EXHAUSTED                     retryable, budget spent
    RETRYING -> PENDING                      claimed by a worker (store.claim)

Every transition is a compare-and-set on the attempt store and every
outcome is appended to history.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from infrastructure.logging import get_module_logger
from modules.delivery.errors import ExhaustedRetryError
from modules.delivery.history import DeliveryHistory
from modules.delivery.models import (
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStatus,
    HistoryEntry,
    utc_now,
)
from modules.delivery.retry.policy import RetryPolicy
from modules.delivery.retry.store import AttemptStore

logger = get_module_logger()

CLEARED_CLAIM = {"claim_worker": None, "claim_expires_at": None}


class AttemptRecorder:
    def __init__(
        self,
        store: AttemptStore,
        history: DeliveryHistory,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.history = history
        self.policy = policy or RetryPolicy()
        self.clock = clock

    def append_history(
        self,
        attempt: DeliveryAttempt,
        status: DeliveryStatus,
        outcome: Optional[DeliveryOutcome] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            event_id=attempt.event_id,
            attempt_id=attempt.id,
            channel=attempt.channel,
            target_ref=attempt.target_ref,
            status=status,
            attempt_number=attempt.attempt_number,
            response_code=outcome.status_code if outcome else None,
            error_code=outcome.error_code if outcome else None,
            error_message=outcome.error_message if outcome else None,
            recorded_at=self.clock(),
            metadata=metadata or {},
        )
        self.history.append(entry)
        return entry

    def record(
        self,
        attempt: DeliveryAttempt,
        outcome: DeliveryOutcome,
        allow_retry: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryStatus:
        """Apply ``outcome`` to a PENDING attempt and return its new status.

        Returns the stored status unchanged when the attempt left PENDING
        concurrently (for instance an operator resolved it).
        """
        now = self.clock()
        log = logger.bind(
            attempt_id=attempt.id,
            event_id=attempt.event_id,
            channel=attempt.channel.value,
            attempt_number=attempt.attempt_number,
        )

        if outcome.success:
            changed = self.store.compare_and_set(
                attempt.id,
                DeliveryStatus.PENDING,
                status=DeliveryStatus.SENT,
                sent_at=now,
                response_code=outcome.status_code,
                provider_message_id=outcome.provider_message_id,
                error_code=None,
                error_message=None,
                next_retry_at=None,
                updated_at=now,
                **CLEARED_CLAIM,
            )
            if not changed:
                return self._lost_race(attempt, log)
            attempt.status = DeliveryStatus.SENT
            self.append_history(attempt, DeliveryStatus.SENT, outcome, metadata)
            log.info("delivery_attempt_sent", provider_message_id=outcome.provider_message_id)
            return DeliveryStatus.SENT

        changed = self.store.compare_and_set(
            attempt.id,
            DeliveryStatus.PENDING,
            status=DeliveryStatus.FAILED,
            response_code=outcome.status_code,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            next_retry_at=None,
            updated_at=now,
            **CLEARED_CLAIM,
        )
        if not changed:
            return self._lost_race(attempt, log)
        attempt.status = DeliveryStatus.FAILED
        log.warning(
            "delivery_attempt_failed",
            error_code=outcome.error_code,
            error=outcome.error_message,
            status_code=outcome.status_code,
            retryable=outcome.is_retryable,
        )

        if not (outcome.is_retryable and allow_retry):
            self.append_history(attempt, DeliveryStatus.FAILED, outcome, metadata)
            return DeliveryStatus.FAILED

        try:
            next_retry_at = self.policy.next_retry_at(attempt, now, outcome.retry_after)
        except ExhaustedRetryError as e:
            self.append_history(attempt, DeliveryStatus.FAILED, outcome, metadata)
            return self._exhaust(attempt, outcome, e, log)

        self.append_history(
            attempt,
            DeliveryStatus.FAILED,
            outcome,
            {**(metadata or {}), "next_retry_at": next_retry_at.isoformat()},
        )
        if self.store.compare_and_set(
            attempt.id,
            DeliveryStatus.FAILED,
            status=DeliveryStatus.RETRYING,
            next_retry_at=next_retry_at,
            updated_at=now,
        ):
            attempt.status = DeliveryStatus.RETRYING
            attempt.next_retry_at = next_retry_at
            log.info("retry_scheduled", next_retry_at=next_retry_at.isoformat())
            return DeliveryStatus.RETRYING
        return self._lost_race(attempt, log)

    def _exhaust(self, attempt, outcome, error: ExhaustedRetryError, log) -> DeliveryStatus:
        if not self.store.compare_and_set(
            attempt.id,
            DeliveryStatus.FAILED,
            status=DeliveryStatus.EXHAUSTED,
            updated_at=self.clock(),
        ):
            return self._lost_race(attempt, log)
        attempt.status = DeliveryStatus.EXHAUSTED
        self.append_history(attempt, DeliveryStatus.EXHAUSTED, outcome)
        log.error("delivery_attempt_exhausted", error=error.message)
        return DeliveryStatus.EXHAUSTED

    def _lost_race(self, attempt: DeliveryAttempt, log) -> DeliveryStatus:
        current = self.store.get(attempt.id)
        status = current.status if current else attempt.status
        log.warning("attempt_transition_skipped", current_status=status.value)
        return status
