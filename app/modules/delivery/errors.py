"""Errors for the delivery module.

Per-channel errors (configuration, rendering, provider failures) are
converted into DeliveryOutcomes by the coordinator and never escape it.
Systemic errors (history or attempt store unavailable) propagate.
"""

from typing import Any, List, Optional


class DeliveryError(Exception):
    """Base class for delivery errors.

    Attributes:
        message: human-friendly message
        response: optional OperationResult returned by the failing integration
    """

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.message = message
        self.response = response


class ConfigurationError(DeliveryError):
    """Missing or invalid target, disabled channel, unregistered dispatcher.

    Fails fast and is never retried.
    """


class TemplateError(DeliveryError):
    """Template failed structural validation or a required variable is missing."""

    def __init__(self, message: str, template_id: Optional[str] = None, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.template_id = template_id
        self.problems = problems or []


RenderError = TemplateError


class TransientProviderError(DeliveryError):
    """Timeout, 5xx or 429 from a provider; eligible for retry."""

    def __init__(self, message: str, response: Any = None, retry_after: Optional[int] = None):
        super().__init__(message, response)
        self.retry_after = retry_after


class TerminalProviderError(DeliveryError):
    """4xx (other than 429) or invalid recipient; recorded and not retried."""


class ExhaustedRetryError(DeliveryError):
    """The retry budget of an attempt is spent."""

    def __init__(self, attempt_id: str, attempt_number: int, max_retries: int):
        super().__init__(
            f"Attempt {attempt_id} exhausted after {attempt_number} tries "
            f"(max_retries={max_retries})"
        )
        self.attempt_id = attempt_id
        self.attempt_number = attempt_number
        self.max_retries = max_retries


class HistoryUnavailableError(DeliveryError):
    """The delivery history could not be written."""


class AttemptStoreError(DeliveryError):
    """The delivery attempt store could not be read or written."""
