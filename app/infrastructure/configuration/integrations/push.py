"""Push (Firebase Cloud Messaging) integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class PushSettings(IntegrationSettings):
    """Firebase Cloud Messaging configuration.

    Environment Variables:
        FIREBASE_CREDENTIALS_PATH: Service account JSON file. When empty the
            application default credentials are used.
        PUSH_DEFAULT_ICON: Notification icon sent with web push messages
        PUSH_DEFAULT_BADGE: Notification badge sent with web push messages
        PUSH_TTL_SECONDS: How long FCM keeps an undelivered message
    """

    FIREBASE_CREDENTIALS_PATH: str = Field(
        default="", alias="FIREBASE_CREDENTIALS_PATH"
    )
    PUSH_DEFAULT_ICON: str = Field(default="/assets/logo.png", alias="PUSH_DEFAULT_ICON")
    PUSH_DEFAULT_BADGE: str = Field(
        default="/assets/badge.png", alias="PUSH_DEFAULT_BADGE"
    )
    PUSH_TTL_SECONDS: int = Field(default=86400, ge=0, alias="PUSH_TTL_SECONDS")
