"""Push dispatcher (Firebase Cloud Messaging).

One message per registered device token. The outcome is a success when
any device accepted it. Tokens FCM reports as unregistered are handed back
to the recipient directory for deactivation.
"""

from typing import TYPE_CHECKING, Optional

from infrastructure.logging import get_module_logger
from infrastructure.resilience import ThrottleRegistry
from integrations.push import firebase
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage

if TYPE_CHECKING:
    from modules.delivery.directory import RecipientDirectory

logger = get_module_logger()


class PushDispatcher(ChannelDispatcher):
    provider = "fcm"
    # Sandbox sends go to FCM with dry_run so tokens are still validated
    supports_dry_run = True

    def __init__(
        self,
        directory: Optional["RecipientDirectory"] = None,
        throttles: Optional[ThrottleRegistry] = None,
        sandbox: bool = False,
    ):
        super().__init__(throttles=throttles, sandbox=sandbox)
        self.directory = directory

    @property
    def channel(self) -> Channel:
        return Channel.PUSH

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        data = {k: str(v) for k, v in message.payload.get("data", {}).items()}
        result = firebase.send_to_tokens(
            tokens=list(target.push_tokens),
            title=message.subject or "",
            body=message.text,
            data=data,
            link=data.get("action_url"),
            dry_run=self.sandbox,
        )
        details = result.data if isinstance(result.data, dict) else {}
        stale = details.get("stale_tokens", [])
        if stale and self.directory is not None:
            for token in stale:
                self.directory.deactivate_push_token(target.user_id, token)
            logger.info("push_stale_tokens_removed", user_id=target.user_id, count=len(stale))
        return self.outcome_from(result)
