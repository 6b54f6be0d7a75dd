"""Multi-channel notification delivery.

Public API:
    - get_delivery_service(): process-wide DeliveryService built from settings
    - DeliveryService, DeliveryCoordinator, DeliveryConfig
    - NotificationEvent, Channel, Priority, Recipient, ChannelTarget
"""

import threading
from typing import Optional

from infrastructure.configuration import settings
from modules.delivery.coordinator import DeliveryConfig, DeliveryCoordinator
from modules.delivery.factory import build_delivery_service
from modules.delivery.models import (
    Channel,
    ChannelPreference,
    ChannelTarget,
    DeliveryStatus,
    DeliverySummary,
    NotificationEvent,
    Priority,
    Recipient,
)
from modules.delivery.service import DeliveryService

_service: Optional[DeliveryService] = None
_service_lock = threading.Lock()


def get_delivery_service() -> DeliveryService:
    """Return the process-wide DeliveryService, building it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_delivery_service(settings)
        return _service


__all__ = [
    "Channel",
    "ChannelPreference",
    "ChannelTarget",
    "DeliveryConfig",
    "DeliveryCoordinator",
    "DeliveryService",
    "DeliveryStatus",
    "DeliverySummary",
    "NotificationEvent",
    "Priority",
    "Recipient",
    "build_delivery_service",
    "get_delivery_service",
]
