"""Email dispatcher (GC Notify)."""

from infrastructure.operations import OperationResult
from integrations import notify
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.errors import TerminalProviderError
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


class EmailDispatcher(ChannelDispatcher):
    provider = "notify_email"

    @property
    def channel(self) -> Channel:
        return Channel.EMAIL

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        if not target.email:
            raise TerminalProviderError(
                f"Recipient {target.user_id} has no email address",
                response=OperationResult.permanent_error(
                    "No email address", error_code="INVALID_RECIPIENT"
                ),
            )
        result = notify.send_email(
            email_address=str(target.email),
            subject=message.subject or "",
            body=message.text,
            html_body=message.html,
            reference=attempt_id,
        )
        return self.outcome_from(result)

    def health_check(self) -> OperationResult:
        return notify.healthcheck()
