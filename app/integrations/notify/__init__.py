"""Notify module for sending email and SMS through the GC Notify API."""

from .client import (
    epoch_seconds,
    create_jwt_token,
    create_authorization_header,
    post_event,
    send_email,
    send_sms,
    healthcheck,
)

__all__ = [
    "epoch_seconds",
    "create_jwt_token",
    "create_authorization_header",
    "post_event",
    "send_email",
    "send_sms",
    "healthcheck",
]
