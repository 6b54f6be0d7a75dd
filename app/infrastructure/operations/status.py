"""Operation status enumeration.

Every provider call made by a dispatcher is reduced to one of these
statuses, which in turn decides whether the retry scheduler ever sees the
failure.
"""

from enum import Enum


class OperationStatus(Enum):
    """Status codes for operation results.

    Attributes:
        SUCCESS: Operation completed successfully
        TRANSIENT_ERROR: Retryable error (network, timeout, 5xx, 429)
        PERMANENT_ERROR: Non-retryable error (validation, invalid recipient)
        UNAUTHORIZED: Authentication or authorization failure (not retried)
        NOT_FOUND: Resource not found (not retried)
    """

    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
