"""Per-provider throttling settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class ThrottleSettings(InfrastructureSettings):
    """Concurrency and rate limits applied independently to each provider.

    Environment Variables:
        THROTTLE_DEFAULT_CONCURRENCY: In-flight calls allowed per provider
        THROTTLE_DEFAULT_PER_MINUTE: Calls allowed per provider per minute (0 = unlimited)
        THROTTLE_ACQUIRE_TIMEOUT_SECONDS: Wait for a concurrency slot before
            reporting the provider as rate limited
        THROTTLE_OVERRIDES: JSON map of provider name to
            {"concurrency": int, "per_minute": int}

    Example:
        ```bash
        THROTTLE_OVERRIDES='{"notify_sms": {"concurrency": 4, "per_minute": 600}}'
        ```
    """

    default_concurrency: int = Field(
        default=8, ge=1, alias="THROTTLE_DEFAULT_CONCURRENCY"
    )
    default_per_minute: int = Field(default=0, ge=0, alias="THROTTLE_DEFAULT_PER_MINUTE")
    acquire_timeout_seconds: float = Field(
        default=30.0, gt=0, alias="THROTTLE_ACQUIRE_TIMEOUT_SECONDS"
    )
    overrides: dict[str, dict[str, int]] = Field(
        default_factory=dict, alias="THROTTLE_OVERRIDES"
    )

