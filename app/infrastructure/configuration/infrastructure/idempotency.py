"""Idempotency infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class IdempotencySettings(InfrastructureSettings):
    """Idempotency cache configuration used to dedupe repeated dispatches.

    Environment Variables:
        IDEMPOTENCY_TTL_SECONDS: Default time-to-live for cache entries (default: 3600s)
        IDEMPOTENCY_MAX_ENTRIES: Entries kept by the in-memory cache before eviction
    """

    IDEMPOTENCY_TTL_SECONDS: int = Field(default=3600, alias="IDEMPOTENCY_TTL_SECONDS")
    IDEMPOTENCY_MAX_ENTRIES: int = Field(
        default=10000, ge=1, alias="IDEMPOTENCY_MAX_ENTRIES"
    )
