"""GC Notify client.

Sends email and SMS through the GC Notify v2 API using pass-through
templates whose personalisation carries the rendered content.
"""

import calendar
import json
import time
from typing import Any, Dict, Optional

import jwt
import requests

from infrastructure.configuration import settings
from infrastructure.logging import get_module_logger
from infrastructure.operations import (
    OperationResult,
    classify_http_status,
    classify_requests_exception,
    parse_retry_after,
)

logger = get_module_logger()

EMAIL_PATH = "/v2/notifications/email"
SMS_PATH = "/v2/notifications/sms"


# generate the epoch seconds for the jwt token
def epoch_seconds():
    return calendar.timegm(time.gmtime())


def create_jwt_token(secret, client_id):
    """
    Generate a JWT Token for the Notify API

    Tokens have a header consisting of:
    {
        "typ": "JWT",
        "alg": "HS256"
    }

    Parameters:
    secret: API key signing secret
    client_id: Service id issuing the token

    Claims are:
    iss: identifier for the client
    iat: epoch seconds for the token (UTC)

    Returns a JWT token for this request
    """
    if not secret:
        logger.error("jwt_token_creation_failed", error="Missing secret key")
        raise ValueError("Missing secret key")
    if not client_id:
        logger.error("jwt_token_creation_failed", error="Missing client id")
        raise ValueError("Missing client id")

    headers = {"typ": "JWT", "alg": "HS256"}

    claims = {"iss": client_id, "iat": epoch_seconds()}
    t = jwt.encode(payload=claims, key=secret, headers=headers)
    if isinstance(t, str):
        return t
    else:
        return t.decode()


def create_authorization_header():
    """Create the authorization header for the Notify API."""
    client_id = settings.notify.NOTIFY_SERVICE_ID
    secret = settings.notify.NOTIFY_CLIENT_SECRET

    if not client_id:
        error = "NOTIFY_SERVICE_ID is missing"
        logger.error("authorization_header_creation_failed", error=error)
        raise ValueError(error)
    if not secret:
        error = "NOTIFY_CLIENT_SECRET is missing"
        logger.error("authorization_header_creation_failed", error=error)
        raise ValueError(error)

    token = create_jwt_token(secret=secret, client_id=client_id)
    return "Authorization", "Bearer {}".format(token)


def post_event(url, payload, timeout=None):
    """Post a JSON payload to Notify."""
    header_key, header_value = create_authorization_header()
    header = {header_key: header_value, "Content-Type": "application/json"}

    return requests.post(
        url,
        data=json.dumps(payload),
        headers=header,
        timeout=timeout or settings.notify.NOTIFY_TIMEOUT_SECONDS,
    )


def _send(path: str, payload: Dict[str, Any], reference: Optional[str]) -> OperationResult:
    if reference:
        payload["reference"] = reference
    url = f"{settings.notify.NOTIFY_API_URL.rstrip('/')}{path}"

    try:
        response = post_event(url, payload)
    except ValueError as e:
        # Missing credentials are a configuration problem, never retried
        return OperationResult.permanent_error(str(e), error_code="NOTIFY_NOT_CONFIGURED")
    except requests.exceptions.RequestException as e:
        return classify_requests_exception(e, provider="GC Notify")

    result = classify_http_status(
        response.status_code,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
        provider="GC Notify",
    )
    if not result.is_success:
        logger.warning(
            "notify_request_failed",
            path=path,
            status_code=response.status_code,
            error_code=result.error_code,
        )
        result.data = {"status_code": response.status_code}
        return result

    try:
        body = response.json()
    except ValueError:
        body = {}
    return OperationResult.success(
        data={"status_code": response.status_code, "id": body.get("id")},
        message="accepted by GC Notify",
    )


def send_email(
    email_address: str,
    subject: str,
    body: str,
    html_body: Optional[str] = None,
    reference: Optional[str] = None,
) -> OperationResult:
    """Send an email through the pass-through email template."""
    payload = {
        "email_address": email_address,
        "template_id": settings.notify.NOTIFY_EMAIL_TEMPLATE_ID,
        "personalisation": {
            "subject": subject,
            "body": body,
            "html_body": html_body or "",
        },
    }
    return _send(EMAIL_PATH, payload, reference)


def send_sms(
    phone_number: str, message: str, reference: Optional[str] = None
) -> OperationResult:
    """Send an SMS through the pass-through SMS template."""
    payload = {
        "phone_number": phone_number,
        "template_id": settings.notify.NOTIFY_SMS_TEMPLATE_ID,
        "personalisation": {"message": message},
    }
    return _send(SMS_PATH, payload, reference)


def healthcheck() -> OperationResult:
    """Check that Notify credentials can produce a token."""
    try:
        create_authorization_header()
    except ValueError as e:
        return OperationResult.permanent_error(str(e), error_code="NOTIFY_NOT_CONFIGURED")
    return OperationResult.success(
        data={"api_url": settings.notify.NOTIFY_API_URL},
        message="GC Notify credentials valid",
    )
