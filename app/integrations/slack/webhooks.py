"""Slack incoming-webhook client."""

from typing import Any, Dict
from urllib.error import URLError

from slack_sdk.webhook import WebhookClient

from infrastructure.logging import get_module_logger
from infrastructure.operations import (
    OperationResult,
    classify_http_status,
    classify_requests_exception,
)

logger = get_module_logger()


def post_message(webhook_url: str, payload: Dict[str, Any], timeout: int = 30) -> OperationResult:
    """Post a message payload (text/attachments/blocks) to an incoming webhook.

    Slack answers 200 with body "ok" on success. Errors come back as 4xx
    with a short reason in the body (``invalid_payload``, ``no_service``...).

    Returns:
        OperationResult with ``data["status_code"]`` and ``data["body"]``
    """
    client = WebhookClient(url=webhook_url, timeout=timeout)
    try:
        response = client.send_dict(payload)
    except (URLError, TimeoutError, OSError) as e:
        return classify_requests_exception(e, provider="Slack")

    result = classify_http_status(response.status_code, provider="Slack")
    result.data = {"status_code": response.status_code, "body": response.body}
    if not result.is_success:
        logger.warning(
            "slack_webhook_rejected",
            status_code=response.status_code,
            body=response.body,
        )
        result.message = f"{result.message}: {response.body}"
    return result
