"""GC Notify integration settings."""

from pydantic import Field

from infrastructure.configuration.base import IntegrationSettings


class NotifySettings(IntegrationSettings):
    """GC Notify API configuration used by the email and SMS dispatchers.

    Environment Variables:
        NOTIFY_SERVICE_ID: GC Notify service id (JWT issuer)
        NOTIFY_CLIENT_SECRET: GC Notify API key secret
        NOTIFY_API_URL: GC Notify API endpoint URL
        NOTIFY_EMAIL_TEMPLATE_ID: Pass-through email template ((subject)), ((body))
        NOTIFY_SMS_TEMPLATE_ID: Pass-through SMS template ((message))
        NOTIFY_TIMEOUT_SECONDS: HTTP timeout for GC Notify calls

    Example:
        ```python
        from infrastructure.configuration import settings

        api_url = settings.notify.NOTIFY_API_URL
        ```
    """

    NOTIFY_SERVICE_ID: str | None = Field(default=None, alias="NOTIFY_SERVICE_ID")
    NOTIFY_CLIENT_SECRET: str | None = Field(
        default=None, alias="NOTIFY_CLIENT_SECRET"
    )
    NOTIFY_API_URL: str = Field(
        default="https://api.notification.canada.ca", alias="NOTIFY_API_URL"
    )
    NOTIFY_EMAIL_TEMPLATE_ID: str = Field(default="", alias="NOTIFY_EMAIL_TEMPLATE_ID")
    NOTIFY_SMS_TEMPLATE_ID: str = Field(default="", alias="NOTIFY_SMS_TEMPLATE_ID")
    NOTIFY_TIMEOUT_SECONDS: int = Field(
        default=60, ge=5, le=300, alias="NOTIFY_TIMEOUT_SECONDS"
    )
