"""Slack integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class SlackSettings(IntegrationSettings):
    """Slack incoming-webhook configuration.

    Environment Variables:
        SLACK_DEFAULT_USERNAME: Username shown on posted messages
        SLACK_DEFAULT_ICON_EMOJI: Emoji avatar shown on posted messages
    """

    SLACK_DEFAULT_USERNAME: str = Field(default="", alias="SLACK_DEFAULT_USERNAME")
    SLACK_DEFAULT_ICON_EMOJI: str = Field(default="", alias="SLACK_DEFAULT_ICON_EMOJI")
