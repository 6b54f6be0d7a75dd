"""Operation result types and status enums.

Standardized result types used by integration clients, dispatchers and
stores, together with the classifiers that map provider failures onto them.
"""

from infrastructure.operations.classifiers import (
    classify_aws_error,
    classify_http_status,
    classify_requests_exception,
    parse_retry_after,
)
from infrastructure.operations.result import OperationResult
from infrastructure.operations.status import OperationStatus

__all__ = [
    "OperationResult",
    "OperationStatus",
    "classify_http_status",
    "classify_requests_exception",
    "classify_aws_error",
    "parse_retry_after",
]
