"""Unit tests for the signed webhook client."""

import hashlib
import hmac
from unittest.mock import MagicMock, patch

import pytest
import requests

from integrations.webhooks.client import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    build_headers,
    post_signed,
    sign_payload,
    verify_signature,
)

pytestmark = pytest.mark.unit

BODY = b'{"data":{"title":"Report approved"},"id":"evt-1","type":"ReportApproved"}'


def _response(status_code, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    return response


class TestSigning:
    """Tests for sign_payload() and verify_signature()."""

    def test_signature_is_hmac_sha256_of_body(self):
        expected = hmac.new(b"shh", BODY, hashlib.sha256).hexdigest()

        assert sign_payload(BODY, "shh") == f"sha256={expected}"

    def test_receiver_verification_accepts_exact_bytes(self):
        signature = sign_payload(BODY, "shh")

        assert verify_signature(BODY, "shh", signature)

    def test_verification_rejects_modified_body_or_secret(self):
        signature = sign_payload(BODY, "shh")

        assert not verify_signature(BODY + b" ", "shh", signature)
        assert not verify_signature(BODY, "other", signature)
        assert not verify_signature(BODY, "shh", "")


class TestBuildHeaders:
    """Tests for build_headers()."""

    def test_headers_with_secret(self):
        headers = build_headers("ReportApproved", "att-1", BODY, "Relay", secret="shh")

        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "Relay-Webhook/1.0"
        assert headers[EVENT_HEADER] == "ReportApproved"
        assert headers[DELIVERY_HEADER] == "att-1"
        assert headers[SIGNATURE_HEADER] == sign_payload(BODY, "shh")

    def test_signature_header_absent_without_secret(self):
        headers = build_headers("ReportApproved", "att-1", BODY, "Relay")

        assert SIGNATURE_HEADER not in headers


class TestPostSigned:
    """Tests for post_signed()."""

    @patch("integrations.webhooks.client.requests.post")
    def test_posts_exact_bytes(self, mock_post):
        mock_post.return_value = _response(204)
        headers = {"Content-Type": "application/json"}

        result = post_signed("https://hooks.example.com", BODY, headers, timeout=10)

        assert result.is_success
        assert result.data == {"status_code": 204}
        mock_post.assert_called_once_with(
            "https://hooks.example.com", data=BODY, headers=headers, timeout=10
        )

    @patch("integrations.webhooks.client.requests.post")
    def test_server_error_is_transient(self, mock_post):
        mock_post.return_value = _response(503)

        result = post_signed("https://hooks.example.com", BODY, {}, timeout=10)

        assert result.is_retryable
        assert result.data == {"status_code": 503}

    @patch("integrations.webhooks.client.requests.post")
    def test_429_carries_retry_after(self, mock_post):
        mock_post.return_value = _response(429, {"Retry-After": "30"})

        result = post_signed("https://hooks.example.com", BODY, {}, timeout=10)

        assert result.error_code == "RATE_LIMITED"
        assert result.retry_after == 30

    @patch("integrations.webhooks.client.logger")
    @patch("integrations.webhooks.client.requests.post")
    def test_client_error_is_logged_and_permanent(self, mock_post, mock_logger):
        mock_post.return_value = _response(401)

        result = post_signed("https://hooks.example.com", BODY, {}, timeout=10)

        assert not result.is_retryable
        assert result.error_code == "UNAUTHORIZED"
        mock_logger.warning.assert_called_once_with(
            "webhook_delivery_rejected", status_code=401, error_code="UNAUTHORIZED"
        )

    @patch("integrations.webhooks.client.requests.post")
    def test_timeout_is_transient(self, mock_post):
        mock_post.side_effect = requests.exceptions.ReadTimeout("slow")

        result = post_signed("https://hooks.example.com", BODY, {}, timeout=10)

        assert result.is_retryable
        assert result.error_code == "TIMEOUT"
