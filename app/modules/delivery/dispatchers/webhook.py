"""Generic webhook dispatcher (signed JSON POST)."""

import json
from typing import Optional

from infrastructure.resilience import ThrottleRegistry
from integrations.webhooks import build_headers, post_signed
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.errors import ConfigurationError
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


def serialize_body(payload: dict) -> bytes:
    """Serialize once; the signature is computed over exactly these bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class WebhookDispatcher(ChannelDispatcher):
    provider = "webhook"

    def __init__(
        self,
        product_name: str = "Relay",
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self.product_name = product_name

    @property
    def channel(self) -> Channel:
        return Channel.WEBHOOK

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        if not message.payload:
            raise ConfigurationError("Webhook message has no payload")
        body = serialize_body(message.payload)
        headers = build_headers(
            event_type=str(message.payload.get("type", "")),
            delivery_id=attempt_id,
            body=body,
            product_name=self.product_name,
            secret=target.secret_key,
        )
        result = post_signed(target.webhook_url, body, headers, timeout=target.timeout_seconds)
        return self.outcome_from(result)
