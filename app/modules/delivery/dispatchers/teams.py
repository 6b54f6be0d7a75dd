"""Microsoft Teams connector dispatcher.

Teams throttles each incoming webhook individually, so the minute budget
is keyed by webhook URL on top of the provider-wide concurrency cap.
"""

from typing import Optional

from infrastructure.resilience import ProviderThrottle, ThrottleRegistry
from integrations.teams.client import post_card
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.errors import ConfigurationError
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


class TeamsDispatcher(ChannelDispatcher):
    provider = "teams"

    def __init__(
        self,
        per_minute: int = 30,
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self.per_minute = per_minute

    @property
    def channel(self) -> Channel:
        return Channel.TEAMS

    def throttle_for(self, target: DeliveryTarget) -> ProviderThrottle:
        return self.throttles.get(self.provider, per_minute=self.per_minute)

    def throttle_key(self, target: DeliveryTarget) -> str:
        return getattr(target, "webhook_url", "")

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        if not message.payload:
            raise ConfigurationError("Teams message has no card")
        result = post_card(target.webhook_url, message.payload, timeout=target.timeout_seconds)
        return self.outcome_from(result)
