"""Retry backoff policy."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from modules.delivery.errors import ExhaustedRetryError
from modules.delivery.models import DeliveryAttempt

if TYPE_CHECKING:
    from infrastructure.configuration.infrastructure.retry import RetrySettings


@dataclass
class RetryPolicy:
    """Exponential backoff for failed delivery attempts.

    ``attempt_number`` counts tries already made (1 after the first
    failure). An attempt is retried while ``attempt_number < max_retries``,
    so ``max_retries=3`` allows three tries in total.

    Example:
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=300)
        policy.delay_for(1)  # 1.0
        policy.delay_for(4)  # 8.0
    """

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")

    @classmethod
    def from_settings(cls, retry_settings: "RetrySettings") -> "RetryPolicy":
        return cls(
            base_delay_seconds=retry_settings.base_delay_seconds,
            max_delay_seconds=retry_settings.max_delay_seconds,
        )

    def delay_for(self, attempt_number: int) -> float:
        exponent = max(attempt_number - 1, 0)
        return min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)

    def should_retry(self, attempt: DeliveryAttempt) -> bool:
        return attempt.attempt_number < attempt.max_retries

    def next_retry_at(
        self,
        attempt: DeliveryAttempt,
        now: datetime,
        retry_after: Optional[int] = None,
    ) -> datetime:
        """When the next try of ``attempt`` becomes due.

        A provider-supplied ``retry_after`` is a lower bound.

        Raises:
            ExhaustedRetryError: The retry budget is spent.
        """
        if not self.should_retry(attempt):
            raise ExhaustedRetryError(attempt.id, attempt.attempt_number, attempt.max_retries)
        delay = self.delay_for(attempt.attempt_number)
        if retry_after:
            delay = max(delay, float(retry_after))
        return now + timedelta(seconds=delay)
