"""Delivery coordinator: fans one event out across its channels.

For each event the coordinator resolves preferences, recipient and
targets, renders per channel, then runs every (channel, target) job
through one ThreadPoolExecutor bounded by ``max_concurrency``. Provider
throttles inside the dispatchers bound each provider on top of that.

Per-channel problems become FAILED deliveries in the summary. Only
HistoryUnavailableError and AttemptStoreError propagate to the caller.
"""

import concurrent.futures
import contextvars
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

from infrastructure.idempotency import IdempotencyCache, IdempotencyKeyBuilder, InMemoryCache
from infrastructure.logging import bind_delivery_context, get_module_logger
from modules.delivery.directory import RecipientDirectory, TargetStore
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.dispatchers.registry import DispatcherRegistry
from modules.delivery.errors import (
    AttemptStoreError,
    ConfigurationError,
    HistoryUnavailableError,
    TemplateError,
)
from modules.delivery.history import DeliveryHistory
from modules.delivery.models import (
    Channel,
    ChannelDelivery,
    ChannelTarget,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStatus,
    DeliverySummary,
    DeliveryTarget,
    HistoryEntry,
    NotificationEvent,
    Priority,
    RenderedMessage,
    new_id,
    utc_now,
)
from modules.delivery.preferences import PreferenceResolver
from modules.delivery.retry.policy import RetryPolicy
from modules.delivery.retry.recorder import AttemptRecorder
from modules.delivery.retry.scheduler import redeliver
from modules.delivery.retry.store import FAILURE_STATUSES, AttemptStore
from modules.delivery.templates import TemplateRenderer

if TYPE_CHECKING:
    from infrastructure.configuration import Settings

logger = get_module_logger()

SYSTEMIC_ERRORS = (HistoryUnavailableError, AttemptStoreError)
TEST_NOTIFICATION_TYPE = "TestNotification"


@dataclass(frozen=True)
class DeliveryConfig:
    """Explicit configuration passed into the coordinator.

    Example:
        config = DeliveryConfig.from_settings(settings)
        config = DeliveryConfig(max_concurrency=4, sandbox_mode=True)
    """

    product_name: str = "Relay"
    max_concurrency: int = 16
    sandbox_mode: bool = False
    dedupe_ttl_seconds: int = 3600
    default_timeout_seconds: int = 30
    default_max_retries: int = 3
    strict_templates: bool = False

    def __post_init__(self) -> None:
        if not 1 <= self.max_concurrency <= 256:
            raise ValueError("max_concurrency must be between 1 and 256")
        if not 5 <= self.default_timeout_seconds <= 300:
            raise ValueError("default_timeout_seconds must be between 5 and 300")
        if not 0 <= self.default_max_retries <= 10:
            raise ValueError("default_max_retries must be between 0 and 10")
        if self.dedupe_ttl_seconds < 0:
            raise ValueError("dedupe_ttl_seconds must be >= 0")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DeliveryConfig":
        delivery = settings.delivery
        return cls(
            product_name=delivery.product_name,
            max_concurrency=delivery.max_concurrency,
            sandbox_mode=delivery.sandbox_mode,
            dedupe_ttl_seconds=delivery.dedupe_ttl_seconds,
            default_timeout_seconds=delivery.default_timeout_seconds,
            default_max_retries=delivery.default_max_retries,
            strict_templates=delivery.strict_templates,
        )


@dataclass
class _Job:
    attempt: DeliveryAttempt
    dispatcher: Optional[ChannelDispatcher]
    message: Optional[RenderedMessage]
    target: Optional[DeliveryTarget]
    # Set when the job failed while planning and must only be recorded
    outcome: Optional[DeliveryOutcome] = None
    allow_retry: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Plan:
    event: NotificationEvent
    jobs: List[_Job] = field(default_factory=list)
    suppressed: int = 0


def _target_snapshot(target: DeliveryTarget) -> Dict[str, Any]:
    """Addressing data kept on the attempt; never includes secrets."""
    if isinstance(target, ChannelTarget):
        return {"id": target.id, "owner_id": target.owner_id, "channel": target.channel.value}
    return target.model_dump(mode="json")


class DeliveryCoordinator:
    def __init__(
        self,
        config: DeliveryConfig,
        resolver: PreferenceResolver,
        renderer: TemplateRenderer,
        registry: DispatcherRegistry,
        recipients: RecipientDirectory,
        targets: TargetStore,
        attempt_store: AttemptStore,
        history: DeliveryHistory,
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[RetryPolicy] = None,
        dedupe_cache: Optional[IdempotencyCache] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.renderer = renderer
        self.registry = registry
        self.recipients = recipients
        self.targets = targets
        self.attempt_store = attempt_store
        self.history = history
        self.clock = clock
        self.recorder = AttemptRecorder(attempt_store, history, policy, clock)
        self.dedupe_cache = dedupe_cache or InMemoryCache()
        self._keys = IdempotencyKeyBuilder("delivery")
        self._inflight: Dict[str, threading.Event] = {}
        self._inflight_lock = threading.Lock()

    # Dedupe

    def _dedupe_key(self, event_id: str) -> str:
        return self._keys.build("dispatch", event_id=event_id)

    def _cached_summary(self, event_id: str) -> Optional[DeliverySummary]:
        cached = self.dedupe_cache.get(self._dedupe_key(event_id))
        if cached is None:
            return None
        summary = DeliverySummary.model_validate(cached)
        summary.deduplicated = True
        logger.info("delivery_deduplicated", event_id=event_id)
        return summary

    def _reserve(
        self, event_id: str
    ) -> Tuple[Optional[DeliverySummary], Optional[threading.Event]]:
        """Try to reserve ``event_id`` without blocking.

        Returns ``(summary, None)`` when the event was already handled,
        ``(None, running)`` when another dispatch holds it, and
        ``(None, None)`` once this caller owns the reservation.
        """
        cached = self._cached_summary(event_id)
        if cached is not None:
            return cached, None
        with self._inflight_lock:
            running = self._inflight.get(event_id)
            if running is None:
                self._inflight[event_id] = threading.Event()
        if running is not None:
            return None, running
        # The previous holder may have cached its summary between the checks
        cached = self._cached_summary(event_id)
        if cached is not None:
            self._finish(event_id, None)
            return cached, None
        return None, None

    def _begin(self, event_id: str) -> Optional[DeliverySummary]:
        """Reserve ``event_id``, waiting for any dispatch that holds it.

        Returns the cached summary when that dispatch succeeded. Callers
        must not hold other reservations while waiting here.
        """
        while True:
            cached, running = self._reserve(event_id)
            if running is None:
                return cached
            running.wait()
            # The other dispatch failed when nothing was cached; retry

    def _finish(self, event_id: str, summary: Optional[DeliverySummary]) -> None:
        if summary is not None and self.config.dedupe_ttl_seconds > 0:
            self.dedupe_cache.set(
                self._dedupe_key(event_id),
                summary.model_dump(mode="json"),
                ttl_seconds=self.config.dedupe_ttl_seconds,
            )
        with self._inflight_lock:
            running = self._inflight.pop(event_id, None)
        if running is not None:
            running.set()

    # Planning

    def _new_attempt(
        self,
        event_id: str,
        event_type: str,
        channel: Channel,
        target_ref: str,
        target: Optional[DeliveryTarget],
        payload: Dict[str, Any],
        max_retries: int,
    ) -> DeliveryAttempt:
        now = self.clock()
        return DeliveryAttempt(
            event_id=event_id,
            event_type=event_type,
            channel=channel,
            target_ref=target_ref,
            target=_target_snapshot(target) if target is not None else {},
            payload=payload,
            max_retries=max_retries,
            attempt_number=1,
            scheduled_at=now,
            created_at=now,
            updated_at=now,
        )

    def _plan_job(
        self,
        event: NotificationEvent,
        channel: Channel,
        target: Optional[DeliveryTarget],
        target_ref: str,
        variables: Dict[str, Any],
    ) -> _Job:
        max_retries = (
            target.max_retries
            if isinstance(target, ChannelTarget)
            else self.config.default_max_retries
        )
        template_ref = str(event.metadata.get("template_id") or event.type)

        def failed(outcome: DeliveryOutcome) -> _Job:
            attempt = self._new_attempt(
                event.id, event.type, channel, target_ref, target, {}, max_retries
            )
            return _Job(attempt, None, None, target, outcome=outcome)

        if target is None:
            return failed(
                DeliveryOutcome.configuration_error(f"Recipient {event.recipient_id} not found")
            )
        try:
            dispatcher = self.registry.get(channel)
        except ConfigurationError as e:
            return failed(DeliveryOutcome.configuration_error(e.message))
        try:
            message = self.renderer.render(
                template_ref, channel, variables, strict=self.config.strict_templates
            )
        except TemplateError as e:
            logger.warning(
                "delivery_render_failed",
                channel=channel.value,
                template_id=e.template_id,
                error=e.message,
            )
            return failed(DeliveryOutcome.render_error(e.message))

        attempt = self._new_attempt(
            event.id,
            event.type,
            channel,
            target_ref,
            target,
            message.model_dump(mode="json"),
            max_retries,
        )
        return _Job(attempt, dispatcher, message, target)

    def _plan(self, event: NotificationEvent) -> _Plan:
        plan = _Plan(event)
        decision = self.resolver.resolve(
            event.recipient_id, event.type, event.priority, self.clock()
        )
        if decision.suppressed:
            self._record_suppressed(event, decision.reason)
            plan.suppressed = 1
            return plan

        variables = event.template_variables()
        if decision.channels:
            recipient = self.recipients.get(event.recipient_id)
            ref = recipient.ref if recipient else f"user:{event.recipient_id}"
            for channel in decision.channels:
                plan.jobs.append(self._plan_job(event, channel, recipient, ref, variables))

        for target in self.targets.active_targets(event.recipient_id, event.type):
            plan.jobs.append(
                self._plan_job(event, target.channel, target, target.ref, variables)
            )

        if not plan.jobs:
            self._record_suppressed(event, decision.reason or "no_channels")
            plan.suppressed = 1
        return plan

    def _record_suppressed(self, event: NotificationEvent, reason: Optional[str]) -> None:
        self.history.append(
            HistoryEntry(
                event_id=event.id,
                status=DeliveryStatus.SUPPRESSED,
                recorded_at=self.clock(),
                metadata={"reason": reason or "", "recipient_id": event.recipient_id},
            )
        )
        logger.info("delivery_suppressed", event_id=event.id, reason=reason)

    # Execution

    def _execute(self, job: _Job) -> ChannelDelivery:
        attempt = job.attempt
        self.attempt_store.save(attempt)

        outcome = job.outcome
        if outcome is None:
            try:
                outcome = job.dispatcher.send(job.message, job.target, attempt.id)
            except Exception as e:  # noqa: BLE001
                logger.exception(
                    "dispatcher_raised",
                    channel=attempt.channel.value,
                    attempt_id=attempt.id,
                    error=str(e),
                )
                outcome = DeliveryOutcome.failed(
                    f"Unexpected {type(e).__name__}: {e}",
                    "UNEXPECTED_ERROR",
                    is_retryable=True,
                )

        status = self.recorder.record(
            attempt, outcome, allow_retry=job.allow_retry, metadata=job.metadata
        )
        return ChannelDelivery(
            event_id=attempt.event_id,
            channel=attempt.channel,
            target_ref=attempt.target_ref,
            status=status,
            attempt_id=attempt.id,
            outcome=outcome,
        )

    def _run(self, jobs: List[Callable[[], ChannelDelivery]]) -> List[ChannelDelivery]:
        """Run jobs on a bounded pool; results keep submission order.

        Every job is joined before a systemic error is re-raised.
        """
        if not jobs:
            return []
        workers = min(self.config.max_concurrency, len(jobs))
        results: List[ChannelDelivery] = []
        first_error: Optional[BaseException] = None
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="delivery"
        ) as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, job) for job in jobs
            ]
            for future in futures:
                try:
                    results.append(future.result())
                except SYSTEMIC_ERRORS as e:
                    logger.error("delivery_systemic_error", error=str(e))
                    first_error = first_error or e
        if first_error is not None:
            raise first_error
        return results

    def _run_plans(self, plans: List[_Plan]) -> List[DeliverySummary]:
        jobs = [job for plan in plans for job in plan.jobs]
        deliveries = self._run([lambda job=job: self._execute(job) for job in jobs])
        by_event: Dict[str, List[ChannelDelivery]] = {}
        for delivery in deliveries:
            by_event.setdefault(delivery.event_id, []).append(delivery)
        return [
            DeliverySummary(
                event_ids=[plan.event.id],
                deliveries=by_event.get(plan.event.id, []),
                suppressed_count=plan.suppressed,
            )
            for plan in plans
        ]

    # Public operations

    def dispatch(self, event: NotificationEvent) -> DeliverySummary:
        """Deliver one event to every enabled channel and target."""
        with bind_delivery_context(
            event_id=event.id, notification_type=event.type, recipient_id=event.recipient_id
        ):
            cached = self._begin(event.id)
            if cached is not None:
                return cached
            summary = None
            try:
                logger.info("dispatch_started", priority=event.priority.label)
                summary = self._run_plans([self._plan(event)])[0]
                logger.info(
                    "dispatch_completed",
                    total=summary.total,
                    succeeded=summary.success_count,
                    failed=summary.failure_count,
                    suppressed=summary.suppressed_count,
                )
                return summary
            finally:
                self._finish(event.id, summary)

    def dispatch_many(self, events: Iterable[NotificationEvent]) -> DeliverySummary:
        """Bulk send: plan every event, then share one bounded executor.

        Events already in flight elsewhere are waited on only after this
        batch has released its own reservations.
        """
        summaries: List[DeliverySummary] = []
        plans: List[_Plan] = []
        reserved: List[str] = []
        deferred: List[NotificationEvent] = []
        seen = set()
        try:
            for event in events:
                if event.id in seen:
                    continue
                seen.add(event.id)
                cached, running = self._reserve(event.id)
                if cached is not None:
                    summaries.append(cached)
                    continue
                if running is not None:
                    deferred.append(event)
                    continue
                reserved.append(event.id)
                with bind_delivery_context(
                    event_id=event.id,
                    notification_type=event.type,
                    recipient_id=event.recipient_id,
                ):
                    plans.append(self._plan(event))

            results = self._run_plans(plans)
            for result in results:
                self._finish(result.event_ids[0], result)
                reserved.remove(result.event_ids[0])
            summaries.extend(results)
        finally:
            for event_id in reserved:
                self._finish(event_id, None)

        for event in deferred:
            summaries.append(self.dispatch(event))

        combined = DeliverySummary.combine(summaries)
        logger.info(
            "bulk_dispatch_completed",
            events=len(combined.event_ids),
            total=combined.total,
            succeeded=combined.success_count,
            failed=combined.failure_count,
        )
        return combined

    def send_test(
        self,
        channel: Channel,
        target: DeliveryTarget,
        sample_variables: Optional[Dict[str, Any]] = None,
    ) -> DeliveryOutcome:
        """Render and send a TestNotification once. Never retried."""
        now = self.clock()
        variables: Dict[str, Any] = {
            "id": new_id(),
            "type": TEST_NOTIFICATION_TYPE,
            "title": f"Test notification from {self.config.product_name}",
            "message": "This is a test notification. Delivery is configured correctly.",
            "priority": Priority.NORMAL.label,
            "category": "",
            "recipient_id": getattr(target, "user_id", getattr(target, "owner_id", "")),
            "sender_id": "",
            "related_entity_id": "",
            "related_entity_type": "",
            "action_url": "",
            "created_at": now.isoformat(),
            "metadata": {},
        }
        variables.update(sample_variables or {})
        event_id = str(variables["id"])
        target_ref = getattr(target, "ref", "")

        def test_job() -> _Job:
            def failed(outcome: DeliveryOutcome) -> _Job:
                attempt = self._new_attempt(
                    event_id, TEST_NOTIFICATION_TYPE, channel, target_ref, target, {}, 0
                )
                return _Job(attempt, None, None, target, outcome=outcome)

            try:
                dispatcher = self.registry.get(channel)
                message = self.renderer.render(
                    TEST_NOTIFICATION_TYPE, channel, variables, strict=self.config.strict_templates
                )
            except ConfigurationError as e:
                return failed(DeliveryOutcome.configuration_error(e.message))
            except TemplateError as e:
                return failed(DeliveryOutcome.render_error(e.message))
            attempt = self._new_attempt(
                event_id,
                TEST_NOTIFICATION_TYPE,
                channel,
                target_ref,
                target,
                message.model_dump(mode="json"),
                0,
            )
            return _Job(attempt, dispatcher, message, target)

        job = test_job()
        job.allow_retry = False
        job.metadata = {"test": True}
        with bind_delivery_context(event_id=event_id, notification_type=TEST_NOTIFICATION_TYPE):
            delivery = self._execute(job)
        logger.info("test_notification_sent", channel=channel.value, success=delivery.success)
        return delivery.outcome

    def retry_failed(self, attempt_ids: Iterable[str]) -> DeliverySummary:
        """Manual retry of FAILED or EXHAUSTED attempts.

        The attempt keeps its id, its budget restarts, and the stored
        payload is re-sent to the same target immediately.
        """
        deliveries: List[ChannelDelivery] = []
        runnable: List[DeliveryAttempt] = []

        for attempt_id in attempt_ids:
            attempt = self.attempt_store.get(attempt_id)
            if attempt is None:
                deliveries.append(
                    ChannelDelivery(
                        event_id="",
                        status=DeliveryStatus.FAILED,
                        attempt_id=attempt_id,
                        outcome=DeliveryOutcome.failed(
                            f"Attempt {attempt_id} not found", "NOT_FOUND", is_retryable=False
                        ),
                    )
                )
                continue

            reset = attempt.status in FAILURE_STATUSES and self.attempt_store.compare_and_set(
                attempt.id,
                attempt.status,
                status=DeliveryStatus.PENDING,
                attempt_number=1,
                next_retry_at=None,
                error_code=None,
                error_message=None,
                claim_worker=None,
                claim_expires_at=None,
                scheduled_at=self.clock(),
                updated_at=self.clock(),
            )
            if not reset:
                deliveries.append(
                    ChannelDelivery(
                        event_id=attempt.event_id,
                        channel=attempt.channel,
                        target_ref=attempt.target_ref,
                        status=attempt.status,
                        attempt_id=attempt.id,
                        outcome=DeliveryOutcome.failed(
                            f"Attempt {attempt.id} is {attempt.status.value}; "
                            "only failed or exhausted attempts can be retried",
                            "INVALID_STATE",
                            is_retryable=False,
                        ),
                    )
                )
                continue
            attempt.status = DeliveryStatus.PENDING
            attempt.attempt_number = 1
            runnable.append(attempt)

        def manual_retry(attempt: DeliveryAttempt) -> ChannelDelivery:
            with bind_delivery_context(
                event_id=attempt.event_id, notification_type=attempt.event_type
            ):
                logger.info("manual_retry_started", attempt_id=attempt.id)
                outcome = redeliver(attempt, self.registry, self.targets)
                status = self.recorder.record(attempt, outcome, metadata={"manual_retry": True})
            return ChannelDelivery(
                event_id=attempt.event_id,
                channel=attempt.channel,
                target_ref=attempt.target_ref,
                status=status,
                attempt_id=attempt.id,
                outcome=outcome,
            )

        deliveries.extend(self._run([lambda a=a: manual_retry(a) for a in runnable]))
        event_ids = list(dict.fromkeys(d.event_id for d in deliveries if d.event_id))
        return DeliverySummary(event_ids=event_ids, deliveries=deliveries)
