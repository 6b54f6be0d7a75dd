"""Firebase Cloud Messaging client.

Sends one message per device token with ``messaging.send_each`` and
reports per-token results, so the caller can tell delivered, stale and
temporarily failing tokens apart.
"""

import threading
from datetime import timedelta
from typing import Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from infrastructure.configuration import settings
from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult

logger = get_module_logger()

APP_NAME = "notification-relay"

# Token no longer valid for this project: never retry, drop the token
STALE_TOKEN_ERRORS = (messaging.UnregisteredError, messaging.SenderIdMismatchError)

TRANSIENT_ERRORS = (
    exceptions.UnavailableError,
    exceptions.InternalError,
    exceptions.DeadlineExceededError,
    exceptions.ResourceExhaustedError,
)

_app_lock = threading.Lock()


def get_app() -> firebase_admin.App:
    """Return the relay's Firebase app, initializing it on first use."""
    with _app_lock:
        try:
            return firebase_admin.get_app(APP_NAME)
        except ValueError:
            path = settings.push.FIREBASE_CREDENTIALS_PATH
            credential = credentials.Certificate(path) if path else None
            logger.info("firebase_app_initialized", with_service_account=bool(path))
            return firebase_admin.initialize_app(credential=credential, name=APP_NAME)


def build_message(
    token: str,
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
    link: Optional[str] = None,
) -> messaging.Message:
    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
        data=data or {},
        android=messaging.AndroidConfig(
            ttl=timedelta(seconds=settings.push.PUSH_TTL_SECONDS)
        ),
        webpush=messaging.WebpushConfig(
            notification=messaging.WebpushNotification(
                icon=settings.push.PUSH_DEFAULT_ICON,
                badge=settings.push.PUSH_DEFAULT_BADGE,
            ),
            fcm_options=messaging.WebpushFCMOptions(link=link) if link else None,
        ),
    )


def send_to_tokens(
    tokens: List[str],
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
    link: Optional[str] = None,
    dry_run: bool = False,
) -> OperationResult:
    """Send a notification to each token.

    Returns:
        SUCCESS when at least one token accepted the message. Otherwise
        TRANSIENT_ERROR when any token failed transiently, else
        PERMANENT_ERROR. ``data`` always holds ``message_ids``,
        ``stale_tokens`` and ``failures``.
    """
    if not tokens:
        return OperationResult.permanent_error(
            "No push tokens registered", error_code="INVALID_RECIPIENT"
        )

    messages = [build_message(t, title, body, data, link) for t in tokens]
    try:
        batch = messaging.send_each(messages, dry_run=dry_run, app=get_app())
    except TRANSIENT_ERRORS as e:
        return OperationResult.transient_error(
            f"FCM unavailable: {e}", error_code="PROVIDER_UNAVAILABLE"
        )
    except (exceptions.FirebaseError, ValueError) as e:
        return OperationResult.permanent_error(f"FCM rejected batch: {e}", error_code="PUSH_ERROR")

    message_ids: List[str] = []
    stale_tokens: List[str] = []
    failures: List[Dict[str, str]] = []
    any_transient = False

    for token, response in zip(tokens, batch.responses):
        if response.success:
            message_ids.append(response.message_id)
            continue
        exc = response.exception
        if isinstance(exc, STALE_TOKEN_ERRORS):
            stale_tokens.append(token)
        elif isinstance(exc, TRANSIENT_ERRORS):
            any_transient = True
        failures.append({"token": token[-8:], "error": type(exc).__name__})

    details = {
        "message_ids": message_ids,
        "stale_tokens": stale_tokens,
        "failures": failures,
    }

    if message_ids:
        return OperationResult.success(
            data=details,
            message=f"delivered to {len(message_ids)}/{len(tokens)} devices",
        )
    if any_transient:
        return OperationResult.transient_error(
            "FCM failed transiently for all devices",
            error_code="PROVIDER_UNAVAILABLE",
            data=details,
        )
    return OperationResult.permanent_error(
        "FCM rejected all devices", error_code="INVALID_RECIPIENT", data=details
    )
