"""Infrastructure configuration module - public API.

Centralized configuration management using pydantic-settings with
domain-based organization.

Exports:
    settings: Singleton Settings instance (main configuration object)
    Settings: Main settings class (for testing/overrides)
    RetrySettings, DeliverySettings: Section classes (for testing)

Example:
    ```python
    from infrastructure.configuration import settings

    region = settings.aws.AWS_REGION
    if settings.retry.enabled:
        ...
    ```
"""

from infrastructure.configuration.settings import Settings, settings
from infrastructure.configuration.features.delivery import DeliverySettings
from infrastructure.configuration.infrastructure.retry import RetrySettings

__all__ = ["Settings", "settings", "DeliverySettings", "RetrySettings"]
