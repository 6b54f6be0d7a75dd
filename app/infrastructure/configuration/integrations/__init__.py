"""Integration settings __init__ - exports all integration settings."""

from infrastructure.configuration.integrations.aws import AwsSettings
from infrastructure.configuration.integrations.notify import NotifySettings
from infrastructure.configuration.integrations.push import PushSettings
from infrastructure.configuration.integrations.slack import SlackSettings
from infrastructure.configuration.integrations.teams import TeamsSettings

__all__ = [
    "AwsSettings",
    "NotifySettings",
    "PushSettings",
    "SlackSettings",
    "TeamsSettings",
]
