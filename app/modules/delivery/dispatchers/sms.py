"""SMS dispatcher (GC Notify)."""

from infrastructure.operations import OperationResult
from integrations import notify
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.errors import TerminalProviderError
from modules.delivery.models import Channel, DeliveryOutcome, DeliveryTarget, RenderedMessage


class SmsDispatcher(ChannelDispatcher):
    provider = "notify_sms"

    @property
    def channel(self) -> Channel:
        return Channel.SMS

    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        # Recipient validates E.164 on construction; absence is the only case left
        if not target.phone_number:
            raise TerminalProviderError(
                f"Recipient {target.user_id} has no phone number",
                response=OperationResult.permanent_error(
                    "No phone number", error_code="INVALID_RECIPIENT"
                ),
            )
        result = notify.send_sms(
            phone_number=target.phone_number, message=message.text, reference=attempt_id
        )
        outcome = self.outcome_from(result)
        outcome.details["segments"] = len(message.segments)
        return outcome

    def health_check(self) -> OperationResult:
        return notify.healthcheck()
