"""Slack incoming-webhook dispatcher."""

from typing import Optional

from infrastructure.resilience import ThrottleRegistry
from integrations.slack.webhooks import post_message
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


class SlackDispatcher(ChannelDispatcher):
    provider = "slack"

    def __init__(
        self,
        username: str = "",
        icon_emoji: str = "",
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self.username = username
        self.icon_emoji = icon_emoji

    @property
    def channel(self) -> Channel:
        return Channel.SLACK

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        payload = dict(message.payload) or {"text": message.text}
        if self.username:
            payload.setdefault("username", self.username)
        if self.icon_emoji:
            payload.setdefault("icon_emoji", self.icon_emoji)
        result = post_message(target.webhook_url, payload, timeout=target.timeout_seconds)
        return self.outcome_from(result)
