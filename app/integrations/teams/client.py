"""Microsoft Teams incoming-webhook client."""

from typing import Any, Dict

import requests

from infrastructure.logging import get_module_logger
from infrastructure.operations import (
    OperationResult,
    classify_http_status,
    classify_requests_exception,
    parse_retry_after,
)

logger = get_module_logger()


def post_card(webhook_url: str, card: Dict[str, Any], timeout: int = 30) -> OperationResult:
    """Post a MessageCard (or adaptive card message) to a Teams webhook.

    Teams connectors reply 200 with body "1" on success. Throttled
    connectors reply 429, which is classified as transient.
    """
    try:
        response = requests.post(
            webhook_url,
            json=card,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        return classify_requests_exception(e, provider="Teams")

    result = classify_http_status(
        response.status_code,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
        provider="Teams",
    )
    result.data = {"status_code": response.status_code, "body": response.text}
    if not result.is_success:
        logger.warning(
            "teams_webhook_rejected",
            status_code=response.status_code,
            body=response.text,
        )
    return result
