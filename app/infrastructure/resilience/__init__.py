"""Resilience patterns: per-provider throttling."""

from infrastructure.resilience.throttle import (
    ProviderThrottle,
    RateLimitExceeded,
    ThrottleRegistry,
)

__all__ = [
    "ProviderThrottle",
    "RateLimitExceeded",
    "ThrottleRegistry",
]
