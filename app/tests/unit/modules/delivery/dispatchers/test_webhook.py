"""Unit tests for the signed webhook dispatcher."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from integrations.webhooks import SIGNATURE_HEADER, sign_payload, verify_signature
from modules.delivery.dispatchers import WebhookDispatcher, serialize_body
from modules.delivery.models import Channel, RenderedMessage
from tests.factories.delivery import make_recipient, make_target

pytestmark = pytest.mark.unit

ENVELOPE = {
    "id": "evt-1",
    "type": "ReportApproved",
    "timestamp": "2026-03-10T12:00:00+00:00",
    "data": {"title": "Report approved", "message": "Your Q1 report was approved."},
}


def _response(status_code, headers=None):
    return MagicMock(status_code=status_code, headers=headers or {})


@pytest.fixture
def message():
    return RenderedMessage(channel=Channel.WEBHOOK, payload=dict(ENVELOPE))


@pytest.fixture
def mock_post():
    with patch("integrations.webhooks.client.requests.post") as mock:
        mock.return_value = _response(200)
        yield mock


class TestWebhookDispatcher:
    """Tests for WebhookDispatcher.send()."""

    def test_signed_post(self, message, mock_post):
        target = make_target(secret_key="s3cret", timeout_seconds=15)

        outcome = WebhookDispatcher().send(message, target, "att-1")

        assert outcome.success
        assert outcome.status_code == 200
        kwargs = mock_post.call_args.kwargs
        body = serialize_body(ENVELOPE)
        assert mock_post.call_args.args[0] == "https://hooks.example.com/relay"
        assert kwargs["data"] == body
        assert kwargs["timeout"] == 15
        headers = kwargs["headers"]
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "Relay-Webhook/1.0"
        assert headers["X-Webhook-Event"] == "ReportApproved"
        assert headers["X-Webhook-Delivery"] == "att-1"
        assert headers[SIGNATURE_HEADER] == sign_payload(body, "s3cret")
        assert verify_signature(body, "s3cret", headers[SIGNATURE_HEADER])

    def test_no_secret_no_signature(self, message, mock_post):
        WebhookDispatcher(product_name="Acme").send(message, make_target(), "att-1")

        headers = mock_post.call_args.kwargs["headers"]
        assert SIGNATURE_HEADER not in headers
        assert headers["User-Agent"] == "Acme-Webhook/1.0"

    def test_body_is_canonical(self):
        assert serialize_body({"b": 1, "a": "é"}) == '{"a":"\\u00e9","b":1}'.encode("utf-8")

    def test_server_error_is_retryable(self, message, mock_post):
        mock_post.return_value = _response(500)

        outcome = WebhookDispatcher().send(message, make_target(), "att-1")

        assert not outcome.success
        assert outcome.is_retryable
        assert outcome.error_code == "SERVER_ERROR"
        assert outcome.status_code == 500

    def test_rate_limited_uses_retry_after(self, message, mock_post):
        mock_post.return_value = _response(429, {"Retry-After": "120"})

        outcome = WebhookDispatcher().send(message, make_target(), "att-1")

        assert outcome.is_retryable
        assert outcome.error_code == "RATE_LIMITED"
        assert outcome.retry_after == 120

    @pytest.mark.parametrize(
        "status_code,error_code",
        [(401, "UNAUTHORIZED"), (403, "FORBIDDEN"), (404, "NOT_FOUND"), (400, "HTTP_ERROR")],
    )
    def test_client_errors_are_terminal(self, message, mock_post, status_code, error_code):
        mock_post.return_value = _response(status_code)

        outcome = WebhookDispatcher().send(message, make_target(), "att-1")

        assert not outcome.is_retryable
        assert outcome.error_code == error_code

    def test_timeout_is_retryable(self, message, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("read timed out")

        outcome = WebhookDispatcher().send(message, make_target(), "att-1")

        assert outcome.is_retryable
        assert outcome.error_code == "TIMEOUT"

    def test_recipient_is_not_a_webhook_target(self, message, mock_post):
        outcome = WebhookDispatcher().send(message, make_recipient(), "att-1")

        assert outcome.error_code == "CONFIGURATION_ERROR"
        assert not outcome.is_retryable
        mock_post.assert_not_called()

    def test_slack_target_is_rejected(self, message, mock_post):
        outcome = WebhookDispatcher().send(message, make_target(channel=Channel.SLACK), "att-1")

        assert outcome.error_code == "CONFIGURATION_ERROR"

    def test_empty_payload_is_a_configuration_error(self, mock_post):
        outcome = WebhookDispatcher().send(
            RenderedMessage(channel=Channel.WEBHOOK), make_target(), "att-1"
        )

        assert outcome.error_code == "CONFIGURATION_ERROR"
        mock_post.assert_not_called()

    def test_sandbox_simulates_success(self, message, mock_post):
        outcome = WebhookDispatcher(sandbox=True).send(message, make_target(), "att-1")

        assert outcome.success
        assert outcome.provider_message_id == "sandbox-att-1"
        assert outcome.details == {"sandbox": True}
        mock_post.assert_not_called()
