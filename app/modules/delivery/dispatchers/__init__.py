"""Channel dispatchers."""

from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.dispatchers.email import EmailDispatcher
from modules.delivery.dispatchers.in_app import InAppDispatcher
from modules.delivery.dispatchers.push import PushDispatcher
from modules.delivery.dispatchers.registry import DispatcherRegistry
from modules.delivery.dispatchers.slack import SlackDispatcher
from modules.delivery.dispatchers.sms import SmsDispatcher
from modules.delivery.dispatchers.teams import TeamsDispatcher
from modules.delivery.dispatchers.webhook import WebhookDispatcher, serialize_body

__all__ = [
    "ChannelDispatcher",
    "DispatcherRegistry",
    "EmailDispatcher",
    "InAppDispatcher",
    "PushDispatcher",
    "SlackDispatcher",
    "SmsDispatcher",
    "TeamsDispatcher",
    "WebhookDispatcher",
    "serialize_body",
]
