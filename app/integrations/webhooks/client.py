"""Signed outbound webhook client.

Payloads are signed with HMAC-SHA256 over the exact bytes that are sent.
Receivers recompute the HMAC over the raw request body with the shared
secret and compare it to the ``X-Webhook-Signature`` header.
"""

import hashlib
import hmac
from typing import Dict, Optional

import requests

from infrastructure.logging import get_module_logger
from infrastructure.operations import (
    OperationResult,
    classify_http_status,
    classify_requests_exception,
    parse_retry_after,
)

logger = get_module_logger()

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_HEADER = "X-Webhook-Delivery"
SIGNATURE_PREFIX = "sha256="


def sign_payload(body: bytes, secret: str) -> str:
    """Return ``sha256=<hex>`` for ``body`` signed with ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of a received signature header."""
    return hmac.compare_digest(sign_payload(body, secret), signature or "")


def build_headers(
    event_type: str,
    delivery_id: str,
    body: bytes,
    product_name: str,
    secret: Optional[str] = None,
) -> Dict[str, str]:
    """Build the outbound header set.

    The signature header is present only when a secret is configured.
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"{product_name}-Webhook/1.0",
        EVENT_HEADER: event_type,
        DELIVERY_HEADER: delivery_id,
    }
    if secret:
        headers[SIGNATURE_HEADER] = sign_payload(body, secret)
    return headers


def post_signed(
    url: str, body: bytes, headers: Dict[str, str], timeout: int
) -> OperationResult:
    """POST pre-serialized bytes. Any 2xx is success."""
    try:
        response = requests.post(url, data=body, headers=headers, timeout=timeout)
    except requests.exceptions.RequestException as e:
        return classify_requests_exception(e, provider="Webhook")

    result = classify_http_status(
        response.status_code,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
        provider="Webhook",
    )
    result.data = {"status_code": response.status_code}
    if not result.is_success:
        logger.warning(
            "webhook_delivery_rejected",
            status_code=response.status_code,
            error_code=result.error_code,
        )
    return result
