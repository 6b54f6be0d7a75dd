"""Error classifiers for provider responses and exceptions.

Converts HTTP status codes, `requests` exceptions and AWS SDK exceptions
into standardized OperationResult objects. Every dispatcher routes its
provider failures through these functions, so a given status code is
always classified the same way.

Key Functions:
- classify_http_status(): HTTP status code → OperationResult
- classify_requests_exception(): requests/urllib network errors → OperationResult
- classify_aws_error(): AWS SDK errors → OperationResult
- parse_retry_after(): Retry-After header → seconds

Usage:
    response = requests.post(url, data=body, timeout=30)
    result = classify_http_status(
        response.status_code,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
        provider="webhook",
    )
"""

import socket
from typing import Optional
from urllib.error import URLError

import requests
from botocore.exceptions import ClientError

from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

DEFAULT_RETRY_AFTER_SECONDS = 60

# Request Timeout and Too Early are safe to repeat
TRANSIENT_CLIENT_ERRORS = frozenset({408, 425})


def parse_retry_after(header_value: Optional[str]) -> Optional[int]:
    """Parse a Retry-After header given in seconds.

    HTTP-date values and malformed headers return None.
    """
    if header_value is None:
        return None
    try:
        seconds = int(str(header_value).strip())
    except (ValueError, TypeError):
        return None
    return max(seconds, 0)


def classify_http_status(
    status_code: int,
    retry_after: Optional[int] = None,
    provider: str = "HTTP",
) -> OperationResult:
    """Classify an HTTP response status into an OperationResult.

    Status Code Mapping:
    - 2xx: SUCCESS
    - 429: Rate limiting → TRANSIENT_ERROR with retry_after
    - 408, 425: TRANSIENT_ERROR
    - 401: PERMANENT_ERROR (UNAUTHORIZED)
    - 403: PERMANENT_ERROR (FORBIDDEN)
    - 404, 410: NOT_FOUND (endpoint or subscription is gone)
    - other 4xx: PERMANENT_ERROR
    - 5xx: TRANSIENT_ERROR
    - anything else (1xx, 3xx): PERMANENT_ERROR

    The function is pure: the same inputs always yield the same result.

    Args:
        status_code: HTTP status returned by the provider
        retry_after: Seconds from a Retry-After header, if any
        provider: Provider name used in messages

    Returns:
        OperationResult with status, message, error_code and retry_after
    """
    if 200 <= status_code < 300:
        return OperationResult.success(
            data={"status_code": status_code},
            message=f"{provider} accepted ({status_code})",
        )

    if status_code == 429:
        return OperationResult.error(
            OperationStatus.TRANSIENT_ERROR,
            f"{provider} rate limited",
            error_code="RATE_LIMITED",
            retry_after=(
                retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
            ),
        )

    if status_code in TRANSIENT_CLIENT_ERRORS:
        return OperationResult.transient_error(
            f"{provider} request timed out ({status_code})",
            error_code="TIMEOUT",
        )

    if status_code == 401:
        return OperationResult.permanent_error(
            f"{provider} authentication failed",
            error_code="UNAUTHORIZED",
        )

    if status_code == 403:
        return OperationResult.permanent_error(
            f"{provider} authorization denied",
            error_code="FORBIDDEN",
        )

    if status_code in (404, 410):
        return OperationResult.error(
            OperationStatus.NOT_FOUND,
            f"{provider} endpoint not found ({status_code})",
            error_code="NOT_FOUND",
        )

    if 400 <= status_code < 500:
        return OperationResult.permanent_error(
            f"{provider} rejected the request ({status_code})",
            error_code="HTTP_ERROR",
        )

    if 500 <= status_code < 600:
        return OperationResult.transient_error(
            f"{provider} server error ({status_code})",
            error_code="SERVER_ERROR",
        )

    return OperationResult.permanent_error(
        f"{provider} unexpected response ({status_code})",
        error_code="UNEXPECTED_STATUS",
    )


def classify_requests_exception(
    exc: Exception, provider: str = "HTTP"
) -> OperationResult:
    """Classify a network exception raised while calling a provider.

    Timeouts and connection failures are transient. Malformed URLs and
    other request construction errors are permanent, since repeating them
    cannot succeed.
    """
    if isinstance(exc, (requests.exceptions.Timeout, socket.timeout, TimeoutError)):
        return OperationResult.transient_error(
            f"{provider} timed out: {exc}",
            error_code="TIMEOUT",
        )

    if isinstance(
        exc,
        (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidHeader,
            ValueError,
        ),
    ):
        return OperationResult.permanent_error(
            f"{provider} request is invalid: {exc}",
            error_code="INVALID_REQUEST",
        )

    if isinstance(exc, requests.exceptions.ConnectionError):
        return OperationResult.transient_error(
            f"{provider} connection error: {type(exc).__name__}: {exc}",
            error_code="CONNECTION_ERROR",
        )

    # RequestException subclasses OSError, so it is matched before it
    if isinstance(exc, requests.exceptions.RequestException):
        return OperationResult.transient_error(
            f"{provider} request failed: {type(exc).__name__}: {exc}",
            error_code="REQUEST_ERROR",
        )

    if isinstance(exc, (URLError, OSError)):
        return OperationResult.transient_error(
            f"{provider} connection error: {type(exc).__name__}: {exc}",
            error_code="CONNECTION_ERROR",
        )

    return OperationResult.transient_error(
        f"{provider} error: {type(exc).__name__}: {exc}",
        error_code="UNKNOWN_ERROR",
    )


def classify_aws_error(exc: Exception) -> OperationResult:
    """Classify AWS SDK errors into OperationResult.

    Error Code Mapping:
    - ConditionalCheckFailedException: PERMANENT_ERROR (a lost compare-and-set)
    - Throttling / ProvisionedThroughputExceeded: TRANSIENT_ERROR with retry_after
    - AccessDeniedException: PERMANENT_ERROR
    - ResourceNotFoundException: NOT_FOUND
    - ValidationException: PERMANENT_ERROR
    - Other: TRANSIENT_ERROR (AWS convention)

    Args:
        exc: Exception raised by AWS SDK (boto3/botocore)

    Returns:
        OperationResult with the AWS error code preserved in ``error_code``
        for conditional check failures.
    """
    if not isinstance(exc, ClientError):
        return OperationResult.transient_error(
            f"AWS connection error: {type(exc).__name__}: {str(exc)}",
            error_code="CONNECTION_ERROR",
        )

    error_code = "Unknown"
    if hasattr(exc, "response") and exc.response:
        error_info = exc.response.get("Error", {})
        error_code = error_info.get("Code", "Unknown")

    if error_code == "ConditionalCheckFailedException":
        return OperationResult.permanent_error(
            "DynamoDB condition not met",
            error_code="ConditionalCheckFailedException",
        )

    if error_code in (
        "ThrottlingException",
        "Throttling",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
    ):
        return OperationResult.error(
            OperationStatus.TRANSIENT_ERROR,
            "AWS API throttled",
            error_code="RATE_LIMITED",
            retry_after=DEFAULT_RETRY_AFTER_SECONDS,
        )

    if error_code == "AccessDeniedException":
        return OperationResult.permanent_error(
            "AWS API access denied",
            error_code="FORBIDDEN",
        )

    if error_code == "ResourceNotFoundException":
        return OperationResult.error(
            OperationStatus.NOT_FOUND,
            "AWS resource not found",
            error_code="NOT_FOUND",
        )

    if error_code in (
        "ValidationException",
        "InvalidParameterException",
        "BadRequestException",
    ):
        return OperationResult.permanent_error(
            f"AWS validation error: {error_code}",
            error_code="INVALID_REQUEST",
        )

    return OperationResult.transient_error(
        f"AWS client error: {error_code}",
        error_code="AWS_CLIENT_ERROR",
    )
