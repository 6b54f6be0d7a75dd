"""Delivery service facade.

The single entry point the business layer uses: dispatch, bulk send,
send test, manual retry and the delivery failures list.

Usage:
    from modules.delivery import get_delivery_service

    service = get_delivery_service()
    summary = service.dispatch(event)
"""

from typing import Dict, Iterable, List, Optional

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult, OperationStatus
from modules.delivery.coordinator import DeliveryCoordinator
from modules.delivery.models import (
    Channel,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStatus,
    DeliverySummary,
    DeliveryTarget,
    HistoryEntry,
    NotificationEvent,
)
from modules.delivery.retry.scheduler import RetryScheduler
from modules.delivery.retry.store import FAILURE_STATUSES

logger = get_module_logger()


class DeliveryService:
    def __init__(self, coordinator: DeliveryCoordinator, scheduler: RetryScheduler):
        self.coordinator = coordinator
        self.scheduler = scheduler

    @property
    def attempts(self):
        return self.coordinator.attempt_store

    @property
    def history(self):
        return self.coordinator.history

    def dispatch(self, event: NotificationEvent) -> DeliverySummary:
        return self.coordinator.dispatch(event)

    def dispatch_many(self, events: Iterable[NotificationEvent]) -> DeliverySummary:
        return self.coordinator.dispatch_many(events)

    bulk_send = dispatch_many

    def send_test(
        self, channel: Channel, target: DeliveryTarget, sample_variables: Optional[dict] = None
    ) -> DeliveryOutcome:
        return self.coordinator.send_test(channel, target, sample_variables)

    def retry_failed(self, attempt_ids: Iterable[str]) -> DeliverySummary:
        return self.coordinator.retry_failed(attempt_ids)

    def process_retries(self) -> Dict[str, int]:
        """One scheduler tick across the worker pool."""
        return self.scheduler.run_pool()

    def list_failures(self, limit: int = 100) -> List[DeliveryAttempt]:
        """The delivery failures list: FAILED and EXHAUSTED attempts."""
        return self.attempts.list_failures(limit)

    def history_for_event(self, event_id: str) -> List[HistoryEntry]:
        return self.history.for_event(event_id)

    def resolve(
        self, attempt_id: str, note: str = "", resolved_by: Optional[str] = None
    ) -> OperationResult:
        """Mark a failed attempt as handled by an operator."""
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            return OperationResult.error(
                OperationStatus.NOT_FOUND, f"Attempt {attempt_id} not found", "NOT_FOUND"
            )
        if attempt.status not in FAILURE_STATUSES or not self.attempts.compare_and_set(
            attempt_id, attempt.status, status=DeliveryStatus.RESOLVED
        ):
            return OperationResult.permanent_error(
                f"Attempt {attempt_id} is {attempt.status.value} and cannot be resolved",
                error_code="INVALID_STATE",
            )
        attempt.status = DeliveryStatus.RESOLVED
        self.coordinator.recorder.append_history(
            attempt,
            DeliveryStatus.RESOLVED,
            metadata={"note": note, "resolved_by": resolved_by or ""},
        )
        logger.info("delivery_failure_resolved", attempt_id=attempt_id, resolved_by=resolved_by)
        return OperationResult.success(data={"attempt_id": attempt_id}, message="resolved")

    def mark_delivered(
        self, attempt_id: str, provider_message_id: Optional[str] = None
    ) -> OperationResult:
        """Record a provider delivery receipt (SENT -> DELIVERED)."""
        changes = {"status": DeliveryStatus.DELIVERED}
        if provider_message_id:
            changes["provider_message_id"] = provider_message_id
        if not self.attempts.compare_and_set(attempt_id, DeliveryStatus.SENT, **changes):
            attempt = self.attempts.get(attempt_id)
            if attempt is None:
                return OperationResult.error(
                    OperationStatus.NOT_FOUND, f"Attempt {attempt_id} not found", "NOT_FOUND"
                )
            return OperationResult.permanent_error(
                f"Attempt {attempt_id} is {attempt.status.value}, expected sent",
                error_code="INVALID_STATE",
            )
        attempt = self.attempts.get(attempt_id)
        self.coordinator.recorder.append_history(attempt, DeliveryStatus.DELIVERED)
        return OperationResult.success(data={"attempt_id": attempt_id}, message="delivered")

    def health_check(self) -> Dict[str, OperationResult]:
        return self.coordinator.registry.health_check()
