"""Infrastructure settings __init__ - exports all infrastructure settings."""

from infrastructure.configuration.infrastructure.idempotency import IdempotencySettings
from infrastructure.configuration.infrastructure.retry import RetrySettings
from infrastructure.configuration.infrastructure.throttle import ThrottleSettings

__all__ = [
    "IdempotencySettings",
    "RetrySettings",
    "ThrottleSettings",
]
