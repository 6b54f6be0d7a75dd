"""Delivery context binding for structured logging.

Binds event-scoped context (correlation id, event id, recipient) so that
every log line emitted while an event fans out carries it, including lines
emitted from dispatcher worker threads.

Usage:
    from infrastructure.logging import bind_delivery_context

    with bind_delivery_context(event_id=event.id, notification_type=event.type):
        logger.info("dispatch_started")
"""

import uuid
from contextlib import contextmanager
from typing import Any, Generator, Optional

import structlog


@contextmanager
def bind_delivery_context(
    correlation_id: Optional[str] = None,
    event_id: Optional[str] = None,
    notification_type: Optional[str] = None,
    recipient_id: Optional[str] = None,
    **extra_context: Any,
) -> Generator[None, None, None]:
    """Bind delivery-scoped context to all logs within the block.

    Args:
        correlation_id: Trace identifier. Defaults to the event id, or a new
            uuid when neither is given.
        event_id: Id of the NotificationEvent being delivered.
        notification_type: Event type (ReportApproved, SecurityAlert...).
        recipient_id: Recipient user id.
        **extra_context: Additional key-value pairs to include in logs.
    """
    context: dict[str, Any] = {
        "correlation_id": correlation_id or event_id or str(uuid.uuid4())
    }

    if event_id is not None:
        context["event_id"] = event_id
    if notification_type is not None:
        context["notification_type"] = notification_type
    if recipient_id is not None:
        context["recipient_id"] = recipient_id

    context.update(extra_context)

    structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*context.keys())


def clear_delivery_context() -> None:
    """Clear all bound context (end of a worker tick or request)."""
    structlog.contextvars.clear_contextvars()
