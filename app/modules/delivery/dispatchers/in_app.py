"""In-app dispatcher: appends to the recipient's inbox."""

from typing import Optional

from infrastructure.resilience import ThrottleRegistry
from modules.delivery.directory import InAppInbox
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


class InAppDispatcher(ChannelDispatcher):
    provider = "in_app"

    def __init__(
        self,
        inbox: InAppInbox,
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self.inbox = inbox

    @property
    def channel(self) -> Channel:
        return Channel.IN_APP

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        item = {
            "title": message.subject or "",
            "message": message.text,
            "attempt_id": attempt_id,
            **message.payload,
        }
        inbox_id = self.inbox.append(target.user_id, item)
        return DeliveryOutcome.sent(provider_message_id=inbox_id)
