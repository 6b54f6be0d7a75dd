"""Notification relay configuration settings - main aggregator."""

from pydantic_settings import BaseSettings, SettingsConfigDict

# Integration settings
from infrastructure.configuration.integrations import (
    AwsSettings,
    NotifySettings,
    PushSettings,
    SlackSettings,
    TeamsSettings,
)

# Feature settings
from infrastructure.configuration.features import DeliverySettings

# Infrastructure settings
from infrastructure.configuration.infrastructure import (
    IdempotencySettings,
    RetrySettings,
    ThrottleSettings,
)


class Settings(BaseSettings):
    """Notification relay configuration settings - main aggregator.

    Aggregates all domain-specific settings into a single configuration object.
    Settings are organized by concern:

    - **Integrations**: Provider configurations (GC Notify, Slack, Teams, FCM, AWS)
    - **Features**: Delivery behaviour (concurrency, sandbox mode, templates)
    - **Infrastructure**: Retry scheduling, throttling, idempotency

    Environment Variables:
        PREFIX: Environment prefix for multi-tenant deployments
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        GIT_SHA: Git commit SHA for deployment tracking

    Example:
        ```python
        from infrastructure.configuration import settings

        cap = settings.delivery.max_concurrency
        base_delay = settings.retry.base_delay_seconds

        if settings.is_production:
            ...
        ```
    """

    # Application-level settings
    PREFIX: str = ""
    LOG_LEVEL: str = "INFO"
    GIT_SHA: str = "Unknown"

    # Integration settings
    aws: AwsSettings
    notify: NotifySettings
    push: PushSettings
    slack: SlackSettings
    teams: TeamsSettings

    # Feature settings
    delivery: DeliverySettings

    # Infrastructure settings
    idempotency: IdempotencySettings
    retry: RetrySettings
    throttle: ThrottleSettings

    @property
    def is_production(self) -> bool:
        """Check if the application is running in production.

        Returns:
            True if PREFIX is empty (production), False otherwise.
        """
        return not bool(self.PREFIX)

    def __init__(self, **kwargs):
        """Initialize Settings with automatic subsettings instantiation.

        Args:
            **kwargs: Optional overrides for specific settings sections.
        """
        settings_map = {
            # Integrations
            "aws": AwsSettings,
            "notify": NotifySettings,
            "push": PushSettings,
            "slack": SlackSettings,
            "teams": TeamsSettings,
            # Features
            "delivery": DeliverySettings,
            # Infrastructure
            "idempotency": IdempotencySettings,
            "retry": RetrySettings,
            "throttle": ThrottleSettings,
        }

        for setting_name, setting_class in settings_map.items():
            if setting_name not in kwargs:
                kwargs[setting_name] = setting_class()

        super().__init__(**kwargs)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


# Create the singleton settings instance
settings = Settings()
