"""Generic signed-webhook integration."""

from .client import (
    SIGNATURE_HEADER,
    build_headers,
    post_signed,
    sign_payload,
    verify_signature,
)

__all__ = [
    "SIGNATURE_HEADER",
    "build_headers",
    "post_signed",
    "sign_payload",
    "verify_signature",
]
