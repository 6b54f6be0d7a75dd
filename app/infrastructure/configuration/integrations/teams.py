"""Microsoft Teams integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class TeamsSettings(IntegrationSettings):
    """Teams incoming-webhook configuration.

    Environment Variables:
        TEAMS_RATE_LIMIT_PER_MINUTE: Posts allowed per webhook URL per minute
    """

    TEAMS_RATE_LIMIT_PER_MINUTE: int = Field(
        default=30, ge=1, alias="TEAMS_RATE_LIMIT_PER_MINUTE"
    )
