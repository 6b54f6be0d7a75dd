"""AWS client helpers.

Centralized client creation and error handling for AWS API calls. Every
call returns an OperationResult classified by `classify_aws_error`, so
stores never handle botocore exceptions directly.

Usage:
    result = execute_aws_api_call(
        service_name="dynamodb",
        method="get_item",
        TableName="delivery-attempts",
        Key={"attempt_id": {"S": "att-123"}},
    )
    if result.is_success:
        item = result.data.get("Item")
"""

import time
from functools import lru_cache
from typing import Any, Callable, Optional

import boto3  # type: ignore
from botocore.client import BaseClient  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from infrastructure.configuration import settings
from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult, classify_aws_error

logger = get_module_logger()

DEFAULT_MAX_RETRIES = 3
BACKOFF_FACTOR = 0.5


@lru_cache(maxsize=None)
def get_aws_client(
    service_name: str,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> BaseClient:
    """Create (and cache) a boto3 client for a service.

    boto3 clients are thread-safe, so a single client per
    (service, region, endpoint) is shared by all dispatcher threads.
    """
    return boto3.client(
        service_name,
        region_name=region_name or settings.aws.AWS_REGION,
        endpoint_url=endpoint_url,
    )


def _is_throttled(error: Exception) -> bool:
    if not isinstance(error, ClientError):
        return False
    code = error.response.get("Error", {}).get("Code")
    return code in settings.aws.THROTTLING_ERRS


def execute_api_call(
    func_name: str,
    api_call: Callable[[], Any],
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> OperationResult:
    """Run an AWS call, retrying throttling errors with exponential backoff.

    Args:
        func_name: Name used in logs (e.g. "dynamodb_put_item")
        api_call: Zero-argument callable performing the request
        max_retries: Retries allowed for throttling errors

    Returns:
        OperationResult with the raw response in ``data`` on success
    """
    for attempt in range(max_retries + 1):
        try:
            response = api_call()
            if attempt > 0:
                logger.info("aws_api_retry_success", function=func_name, attempt=attempt + 1)
            return OperationResult.success(data=response, message=f"{func_name} ok")
        except (BotoCoreError, ClientError) as e:
            if _is_throttled(e) and attempt < max_retries:
                delay = BACKOFF_FACTOR * (2**attempt)
                logger.warning(
                    "aws_api_retrying",
                    function=func_name,
                    attempt=attempt + 1,
                    error=str(e),
                    delay=delay,
                )
                time.sleep(delay)
                continue

            result = classify_aws_error(e)
            if result.error_code == "ConditionalCheckFailedException":
                logger.debug("aws_api_condition_failed", function=func_name)
            else:
                logger.error(
                    "aws_api_error_final",
                    function=func_name,
                    error=str(e),
                    error_code=result.error_code,
                )
            return result

    # Unreachable: the loop always returns
    return OperationResult.transient_error(f"{func_name} exhausted retries")


def execute_aws_api_call(
    service_name: str,
    method: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    **kwargs,
) -> OperationResult:
    """Call ``method`` on the service client with centralized error handling."""

    def api_call():
        client = get_aws_client(
            service_name,
            endpoint_url=(
                settings.aws.DYNAMODB_ENDPOINT_URL
                if service_name == "dynamodb"
                else None
            ),
        )
        return getattr(client, method)(**kwargs)

    return execute_api_call(f"{service_name}_{method}", api_call, max_retries)
