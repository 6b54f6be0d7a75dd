"""Wire the delivery subsystem from Settings."""

from datetime import datetime
from typing import Callable, List, Optional

from infrastructure.configuration import Settings
from infrastructure.idempotency import create_cache
from infrastructure.logging import get_module_logger
from infrastructure.resilience import ThrottleRegistry
from modules.delivery.coordinator import DeliveryConfig, DeliveryCoordinator
from modules.delivery.directory import (
    InAppInbox,
    InMemoryInbox,
    InMemoryRecipientDirectory,
    InMemoryTargetStore,
    RecipientDirectory,
    TargetStore,
)
from modules.delivery.dispatchers import (
    DispatcherRegistry,
    EmailDispatcher,
    InAppDispatcher,
    PushDispatcher,
    SlackDispatcher,
    SmsDispatcher,
    TeamsDispatcher,
    WebhookDispatcher,
)
from modules.delivery.history import DynamoDBDeliveryHistory, InMemoryDeliveryHistory
from modules.delivery.models import utc_now
from modules.delivery.preferences import (
    DynamoDBPreferenceStore,
    InMemoryPreferenceStore,
    PreferenceResolver,
    PreferenceStore,
)
from modules.delivery.retry import (
    DynamoDBAttemptStore,
    InMemoryAttemptStore,
    RetryPolicy,
    RetryScheduler,
)
from modules.delivery.service import DeliveryService
from modules.delivery.templates import Template, TemplateRegistry, TemplateRenderer

logger = get_module_logger()


def build_registry(
    settings: Settings,
    recipients: RecipientDirectory,
    inbox: InAppInbox,
    throttles: Optional[ThrottleRegistry] = None,
) -> DispatcherRegistry:
    throttles = throttles or ThrottleRegistry.from_settings(settings.throttle)
    sandbox = settings.delivery.sandbox_mode
    return DispatcherRegistry(
        [
            EmailDispatcher(throttles=throttles, sandbox=sandbox),
            SmsDispatcher(throttles=throttles, sandbox=sandbox),
            PushDispatcher(directory=recipients, throttles=throttles, sandbox=sandbox),
            InAppDispatcher(inbox, throttles=throttles, sandbox=sandbox),
            SlackDispatcher(
                username=settings.slack.SLACK_DEFAULT_USERNAME,
                icon_emoji=settings.slack.SLACK_DEFAULT_ICON_EMOJI,
                throttles=throttles,
                sandbox=sandbox,
            ),
            TeamsDispatcher(
                per_minute=settings.teams.TEAMS_RATE_LIMIT_PER_MINUTE,
                throttles=throttles,
                sandbox=sandbox,
            ),
            WebhookDispatcher(
                product_name=settings.delivery.product_name,
                throttles=throttles,
                sandbox=sandbox,
            ),
        ]
    )


def build_delivery_service(
    settings: Settings,
    recipients: Optional[RecipientDirectory] = None,
    targets: Optional[TargetStore] = None,
    inbox: Optional[InAppInbox] = None,
    preferences: Optional[PreferenceStore] = None,
    templates: Optional[List[Template]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> DeliveryService:
    """Build a DeliveryService for ``settings.delivery.backend``.

    Recipients, targets and the inbox belong to the business layer and are
    normally injected; in-memory versions are used when omitted.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.delivery.backend
    if backend == "memory":
        attempt_store = InMemoryAttemptStore()
        history = InMemoryDeliveryHistory()
        preferences = preferences or InMemoryPreferenceStore()
    elif backend == "dynamodb":
        attempt_store = DynamoDBAttemptStore(settings.delivery.attempts_table_name)
        history = DynamoDBDeliveryHistory(settings.delivery.history_table_name)
        preferences = preferences or DynamoDBPreferenceStore(
            settings.delivery.preferences_table_name
        )
    else:
        raise ValueError(f"Unknown delivery backend: {backend}")

    recipients = recipients or InMemoryRecipientDirectory()
    targets = targets or InMemoryTargetStore()
    inbox = inbox or InMemoryInbox()
    config = DeliveryConfig.from_settings(settings)
    registry = build_registry(settings, recipients, inbox)

    coordinator = DeliveryCoordinator(
        config=config,
        resolver=PreferenceResolver(preferences, clock=clock),
        renderer=TemplateRenderer(
            TemplateRegistry(templates),
            product_name=config.product_name,
            strict=config.strict_templates,
        ),
        registry=registry,
        recipients=recipients,
        targets=targets,
        attempt_store=attempt_store,
        history=history,
        clock=clock,
        policy=RetryPolicy.from_settings(settings.retry),
        dedupe_cache=create_cache(settings),
    )
    scheduler = RetryScheduler(
        store=attempt_store,
        registry=registry,
        targets=targets,
        recorder=coordinator.recorder,
        batch_size=settings.retry.batch_size,
        claim_lease_seconds=settings.retry.claim_lease_seconds,
        workers=settings.retry.workers,
        clock=clock,
    )
    logger.info(
        "delivery_service_initialized",
        backend=backend,
        max_concurrency=config.max_concurrency,
        sandbox_mode=config.sandbox_mode,
        channels=[c.value for c in registry.channels],
    )
    return DeliveryService(coordinator, scheduler)
