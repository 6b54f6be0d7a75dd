"""Test factories for the delivery module.

Factory functions return real models so tests exercise validation, plus a
controllable clock, a scripted dispatcher and an in-memory delivery stack.

Example:
    >>> stack = make_stack(dispatchers=[FakeDispatcher(Channel.EMAIL)])
    >>> summary = stack.coordinator.dispatch(make_event())
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

from infrastructure.resilience import ThrottleRegistry
from modules.delivery.coordinator import DeliveryConfig, DeliveryCoordinator
from modules.delivery.directory import (
    InMemoryInbox,
    InMemoryRecipientDirectory,
    InMemoryTargetStore,
)
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.dispatchers.registry import DispatcherRegistry
from modules.delivery.history import InMemoryDeliveryHistory
from modules.delivery.models import (
    Channel,
    ChannelPreference,
    ChannelTarget,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStatus,
    NotificationEvent,
    Priority,
    Recipient,
)
from modules.delivery.preferences import InMemoryPreferenceStore, PreferenceResolver
from modules.delivery.retry import InMemoryAttemptStore, RetryPolicy, RetryScheduler
from modules.delivery.service import DeliveryService
from modules.delivery.templates import Template, TemplateRegistry, TemplateRenderer

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class ConcurrencyGauge:
    """Tracks the peak number of overlapping provider calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def enter(self) -> None:
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)

    def exit(self) -> None:
        with self._lock:
            self.in_flight -= 1


class FakeDispatcher(ChannelDispatcher):
    """Scripted dispatcher: returns queued outcomes, then ``default``.

    A queued Exception instance is raised from ``_deliver`` instead.
    """

    def __init__(
        self,
        channel: Channel,
        outcomes: Optional[List[Any]] = None,
        default: Optional[DeliveryOutcome] = None,
        delay: float = 0.0,
        gauge: Optional[ConcurrencyGauge] = None,
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self._channel = channel
        self.provider = f"fake_{channel.value}"
        self.outcomes = list(outcomes or [])
        self.default = default or DeliveryOutcome.sent(
            provider_message_id=f"{channel.value}-msg", status_code=200
        )
        self.delay = delay
        self.gauge = gauge
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def channel(self) -> Channel:
        return self._channel

    def _deliver(self, message, target, attempt_id):
        with self._lock:
            self.calls.append({"message": message, "target": target, "attempt_id": attempt_id})
            outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if self.gauge:
            self.gauge.enter()
        try:
            if self.delay:
                time.sleep(self.delay)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome.model_copy(deep=True)
        finally:
            if self.gauge:
                self.gauge.exit()


def server_error() -> DeliveryOutcome:
    return DeliveryOutcome.failed(
        "Webhook server error (500)", "SERVER_ERROR", is_retryable=True, status_code=500
    )


def unauthorized() -> DeliveryOutcome:
    return DeliveryOutcome.failed(
        "Webhook authentication failed", "UNAUTHORIZED", is_retryable=False, status_code=401
    )


def make_event(
    type: str = "ReportApproved",
    recipient_id: str = "user-1",
    priority: Priority = Priority.NORMAL,
    title: str = "Report approved",
    message: str = "Your Q1 report was approved.",
    **overrides: Any,
) -> NotificationEvent:
    """Create a NotificationEvent with sensible defaults."""
    values: Dict[str, Any] = {
        "type": type,
        "recipient_id": recipient_id,
        "priority": priority,
        "title": title,
        "message": message,
        "created_at": START,
    }
    values.update(overrides)
    return NotificationEvent(**values)


def make_recipient(
    user_id: str = "user-1",
    email: Optional[str] = "user1@example.com",
    phone_number: Optional[str] = "+16135550100",
    push_tokens: Optional[List[str]] = None,
) -> Recipient:
    return Recipient(
        user_id=user_id,
        email=email,
        phone_number=phone_number,
        push_tokens=["token-1"] if push_tokens is None else push_tokens,
    )


def make_target(
    channel: Channel = Channel.WEBHOOK,
    id: str = "target-1",
    owner_id: str = "user-1",
    webhook_url: str = "https://hooks.example.com/relay",
    **overrides: Any,
) -> ChannelTarget:
    """Create a ChannelTarget (webhook by default)."""
    return ChannelTarget(
        id=id, owner_id=owner_id, channel=channel, webhook_url=webhook_url, **overrides
    )


def make_preference(
    user_id: str = "user-1", notification_type: str = "ReportApproved", **overrides: Any
) -> ChannelPreference:
    return ChannelPreference(user_id=user_id, notification_type=notification_type, **overrides)


def make_targets_only_preference(
    user_id: str = "user-1", notification_type: str = "ReportApproved", **overrides: Any
) -> ChannelPreference:
    """A stored preference with every recipient channel switched off."""
    values: Dict[str, Any] = {
        "email_enabled": False,
        "sms_enabled": False,
        "push_enabled": False,
        "in_app_enabled": False,
    }
    values.update(overrides)
    return make_preference(user_id, notification_type, **values)


def make_attempt(
    channel: Channel = Channel.WEBHOOK,
    status: DeliveryStatus = DeliveryStatus.PENDING,
    attempt_number: int = 1,
    max_retries: int = 3,
    **overrides: Any,
) -> DeliveryAttempt:
    values: Dict[str, Any] = {
        "event_id": "evt-1",
        "event_type": "ReportApproved",
        "channel": channel,
        "target_ref": f"{channel.value}:target-1",
        "target": {"id": "target-1", "owner_id": "user-1", "channel": channel.value},
        "payload": {"channel": channel.value, "subject": "Report approved", "payload": {}},
        "max_retries": max_retries,
        "status": status,
        "attempt_number": attempt_number,
        "scheduled_at": START,
        "created_at": START,
        "updated_at": START,
    }
    values.update(overrides)
    return DeliveryAttempt(**values)


def make_stack(
    dispatchers: Optional[Iterable[ChannelDispatcher]] = None,
    recipients: Optional[List[Recipient]] = None,
    targets: Optional[List[ChannelTarget]] = None,
    preferences: Optional[List[ChannelPreference]] = None,
    templates: Optional[List[Template]] = None,
    config: Optional[DeliveryConfig] = None,
    clock: Optional[FakeClock] = None,
) -> SimpleNamespace:
    """Wire an in-memory delivery stack around the given dispatchers.

    Defaults to one FakeDispatcher per channel and a single recipient.
    """
    clock = clock or FakeClock()
    if dispatchers is None:
        dispatchers = [FakeDispatcher(channel) for channel in Channel]
    dispatchers = list(dispatchers)

    preference_store = InMemoryPreferenceStore()
    for preference in preferences or []:
        preference_store.save(preference)

    directory = InMemoryRecipientDirectory(
        [make_recipient()] if recipients is None else recipients
    )
    target_store = InMemoryTargetStore(targets or [])
    attempts = InMemoryAttemptStore()
    history = InMemoryDeliveryHistory()
    registry = DispatcherRegistry(dispatchers)

    coordinator = DeliveryCoordinator(
        config=config or DeliveryConfig(max_concurrency=8),
        resolver=PreferenceResolver(preference_store, clock=clock),
        renderer=TemplateRenderer(TemplateRegistry(templates)),
        registry=registry,
        recipients=directory,
        targets=target_store,
        attempt_store=attempts,
        history=history,
        clock=clock,
        policy=RetryPolicy(base_delay_seconds=1, max_delay_seconds=300),
    )
    scheduler = RetryScheduler(
        store=attempts,
        registry=registry,
        targets=target_store,
        recorder=coordinator.recorder,
        workers=2,
        clock=clock,
    )
    return SimpleNamespace(
        clock=clock,
        coordinator=coordinator,
        scheduler=scheduler,
        service=DeliveryService(coordinator, scheduler),
        attempts=attempts,
        history=history,
        preferences=preference_store,
        recipients=directory,
        targets=target_store,
        inbox=InMemoryInbox(),
        registry=registry,
        dispatchers={d.channel: d for d in dispatchers},
    )
