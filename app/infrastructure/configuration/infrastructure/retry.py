"""Retry scheduler infrastructure settings."""

from pydantic import Field

from infrastructure.configuration.base import InfrastructureSettings


class RetrySettings(InfrastructureSettings):
    """Retry scheduler configuration for failed delivery attempts.

    Failed attempts are persisted in the attempt store and picked up by a
    fixed pool of polling workers, so pending retries survive restarts.

    Environment Variables:
        RETRY_ENABLED: Start the background retry poller (default: True)
        RETRY_BASE_DELAY_SECONDS: Base exponential backoff delay (default: 1s)
        RETRY_MAX_DELAY_SECONDS: Backoff cap (default: 300s = 5min)
        RETRY_BATCH_SIZE: Attempts fetched per worker per poll (default: 25)
        RETRY_CLAIM_LEASE_SECONDS: Claim duration, longer than the largest
            target timeout (default: 330s)
        RETRY_POLL_INTERVAL_SECONDS: Poll period of the scheduler (default: 1s)
        RETRY_WORKERS: Size of the worker pool (default: 4)

    Exponential Backoff:
        Delay after failed attempt n (1-based): min(base * 2^(n-1), max)

        Example with defaults (base=1s, max=300s):
            Attempt 1 failed: retry in 1s
            Attempt 2 failed: retry in 2s
            Attempt 3 failed: retry in 4s
            Attempt 10 failed: retry in 300s (capped)
    """

    enabled: bool = Field(
        default=True,
        alias="RETRY_ENABLED",
        description="Run the background retry poller",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        alias="RETRY_BASE_DELAY_SECONDS",
        description="Base delay for exponential backoff (seconds)",
    )
    max_delay_seconds: float = Field(
        default=300.0,
        gt=0,
        alias="RETRY_MAX_DELAY_SECONDS",
        description="Maximum delay for exponential backoff (seconds)",
    )
    batch_size: int = Field(
        default=25,
        ge=1,
        alias="RETRY_BATCH_SIZE",
        description="Number of due attempts fetched per poll",
    )
    claim_lease_seconds: int = Field(
        default=330,
        ge=1,
        alias="RETRY_CLAIM_LEASE_SECONDS",
        description="Duration a worker holds its claim on an attempt",
    )
    poll_interval_seconds: int = Field(
        default=1,
        ge=1,
        alias="RETRY_POLL_INTERVAL_SECONDS",
        description="How often the scheduler polls for due attempts",
    )
    workers: int = Field(
        default=4,
        ge=1,
        le=64,
        alias="RETRY_WORKERS",
        description="Number of polling workers",
    )
