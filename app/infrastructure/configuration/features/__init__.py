"""Feature settings __init__ - exports all feature settings."""

from infrastructure.configuration.features.delivery import DeliverySettings

__all__ = [
    "DeliverySettings",
]
