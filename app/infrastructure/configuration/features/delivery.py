"""Delivery feature settings."""

from pydantic import Field

from infrastructure.configuration.base import FeatureSettings


class DeliverySettings(FeatureSettings):
    """Notification delivery configuration.

    Environment Variables:
        DELIVERY_PRODUCT_NAME: Product name used in the webhook User-Agent
        DELIVERY_MAX_CONCURRENCY: Maximum in-flight dispatches per coordinator
        DELIVERY_SANDBOX_MODE: Render and record deliveries without calling providers
        DELIVERY_DEDUPE_TTL_SECONDS: Window during which a re-sent event id is ignored
        DELIVERY_DEFAULT_TIMEOUT_SECONDS: Provider timeout when a target has none (5-300)
        DELIVERY_DEFAULT_MAX_RETRIES: Retry budget for recipient channels (0-10)
        DELIVERY_STRICT_TEMPLATES: Fail rendering when a required variable is missing
        DELIVERY_BACKEND: Store backend - 'memory' or 'dynamodb'
        DELIVERY_ATTEMPTS_TABLE_NAME: DynamoDB table for delivery attempts
        DELIVERY_HISTORY_TABLE_NAME: DynamoDB table for the delivery history
        DELIVERY_PREFERENCES_TABLE_NAME: DynamoDB table for channel preferences

    Example:
        ```python
        from infrastructure.configuration import settings

        cap = settings.delivery.max_concurrency
        if settings.delivery.sandbox_mode:
            ...
        ```
    """

    product_name: str = Field(default="Relay", alias="DELIVERY_PRODUCT_NAME")
    max_concurrency: int = Field(
        default=16, ge=1, le=256, alias="DELIVERY_MAX_CONCURRENCY"
    )
    sandbox_mode: bool = Field(default=False, alias="DELIVERY_SANDBOX_MODE")
    dedupe_ttl_seconds: int = Field(
        default=3600, ge=0, alias="DELIVERY_DEDUPE_TTL_SECONDS"
    )
    default_timeout_seconds: int = Field(
        default=30, ge=5, le=300, alias="DELIVERY_DEFAULT_TIMEOUT_SECONDS"
    )
    default_max_retries: int = Field(
        default=3, ge=0, le=10, alias="DELIVERY_DEFAULT_MAX_RETRIES"
    )
    strict_templates: bool = Field(default=False, alias="DELIVERY_STRICT_TEMPLATES")
    backend: str = Field(
        default="memory",
        alias="DELIVERY_BACKEND",
        description="Store backend: 'memory' or 'dynamodb'",
    )
    attempts_table_name: str = Field(
        default="delivery-attempts", alias="DELIVERY_ATTEMPTS_TABLE_NAME"
    )
    history_table_name: str = Field(
        default="delivery-history", alias="DELIVERY_HISTORY_TABLE_NAME"
    )
    preferences_table_name: str = Field(
        default="channel-preferences", alias="DELIVERY_PREFERENCES_TABLE_NAME"
    )
