"""Channel dispatcher abstract base class.

Every channel implementation (email, SMS, push, in-app, Slack, Teams,
webhook) implements this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from infrastructure.logging import get_module_logger
from infrastructure.operations import OperationResult, OperationStatus
from infrastructure.resilience import ProviderThrottle, RateLimitExceeded, ThrottleRegistry
from modules.delivery.errors import (
    ConfigurationError,
    TerminalProviderError,
    TransientProviderError,
)
from modules.delivery.models import (
    Channel,
    ChannelTarget,
    DeliveryOutcome,
    DeliveryTarget,
    Recipient,
    RenderedMessage,
)

logger = get_module_logger()


class ChannelDispatcher(ABC):
    """Translate a rendered message into one provider call.

    ``send`` never raises for provider problems: configuration errors,
    provider errors, throttling and unexpected exceptions all come back as
    classified DeliveryOutcomes. Subclasses implement ``_deliver`` and may
    raise the delivery errors from there.

    Example Implementation:
        class SlackDispatcher(ChannelDispatcher):
            provider = "slack"

            @property
            def channel(self) -> Channel:
                return Channel.SLACK

            def _deliver(self, message, target, attempt_id):
                result = post_message(target.webhook_url, message.payload)
                return self.outcome_from(result)
    """

    provider: str = ""
    supports_dry_run = False

    def __init__(self, throttles: Optional[ThrottleRegistry] = None, sandbox: bool = False):
        self.throttles = throttles or ThrottleRegistry()
        self.sandbox = sandbox

    @property
    @abstractmethod
    def channel(self) -> Channel:
        """Channel served by this dispatcher."""

    @abstractmethod
    def _deliver(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        """Make the provider call. Runs inside the provider throttle slot."""

    def validate_target(self, target: DeliveryTarget) -> None:
        """Raise ConfigurationError when ``target`` cannot address this channel."""
        if self.channel.uses_target:
            if not isinstance(target, ChannelTarget) or target.channel != self.channel:
                raise ConfigurationError(
                    f"{self.channel.value} requires a {self.channel.value} target"
                )
        elif not isinstance(target, Recipient):
            raise ConfigurationError(f"{self.channel.value} requires a recipient")

    def throttle_for(self, target: DeliveryTarget) -> ProviderThrottle:
        return self.throttles.get(self.provider or self.channel.value)

    def throttle_key(self, target: DeliveryTarget) -> str:
        return ""

    def send(
        self, message: RenderedMessage, target: DeliveryTarget, attempt_id: str
    ) -> DeliveryOutcome:
        """Deliver ``message`` to ``target``; always returns an outcome."""
        try:
            self.validate_target(target)
            if self.sandbox and not self.supports_dry_run:
                logger.info(
                    "delivery_sandboxed",
                    channel=self.channel.value,
                    attempt_id=attempt_id,
                )
                return DeliveryOutcome.sent(
                    provider_message_id=f"sandbox-{attempt_id}", details={"sandbox": True}
                )
            with self.throttle_for(target).slot(self.throttle_key(target)):
                return self._deliver(message, target, attempt_id)
        except RateLimitExceeded as e:
            return DeliveryOutcome.rate_limited(e.retry_after)
        except ConfigurationError as e:
            logger.warning(
                "delivery_configuration_error",
                channel=self.channel.value,
                attempt_id=attempt_id,
                error=e.message,
            )
            return DeliveryOutcome.configuration_error(e.message)
        except TransientProviderError as e:
            if isinstance(e.response, OperationResult):
                return DeliveryOutcome.from_result(e.response)
            return DeliveryOutcome.failed(
                e.message, "PROVIDER_ERROR", is_retryable=True, retry_after=e.retry_after
            )
        except TerminalProviderError as e:
            if isinstance(e.response, OperationResult):
                return DeliveryOutcome.from_result(e.response)
            return DeliveryOutcome.failed(e.message, "PROVIDER_ERROR", is_retryable=False)
        except Exception as e:  # noqa: BLE001
            logger.exception(
                "dispatcher_unexpected_error",
                channel=self.channel.value,
                attempt_id=attempt_id,
                error=str(e),
            )
            return DeliveryOutcome.failed(
                f"Unexpected {type(e).__name__}: {e}", "UNEXPECTED_ERROR", is_retryable=True
            )

    def outcome_from(self, result: OperationResult) -> DeliveryOutcome:
        """Map an integration result, raising the provider error for failures."""
        if result.is_success:
            return DeliveryOutcome.from_result(result)
        if result.status == OperationStatus.TRANSIENT_ERROR:
            raise TransientProviderError(
                result.message, response=result, retry_after=result.retry_after
            )
        raise TerminalProviderError(result.message, response=result)

    def health_check(self) -> OperationResult:
        return OperationResult.success(message=f"{self.channel.value} dispatcher ready")
