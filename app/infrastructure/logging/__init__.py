"""Structured logging infrastructure.

Centralized logging configuration and utilities for the notification
relay using structlog.

Public API:
    - configure_logging(): Initialize logging for the application
    - get_module_logger(): Get a logger for the calling module
    - bind_delivery_context(): Context manager for event-scoped logging
    - clear_delivery_context(): Clear all bound context

Formatters:
    - mask_sensitive_data(), truncate_large_values()
"""

from infrastructure.logging.setup import (
    configure_logging,
    get_module_logger,
)

from infrastructure.logging.context import (
    bind_delivery_context,
    clear_delivery_context,
)

from infrastructure.logging.formatters import (
    mask_sensitive_data,
    truncate_large_values,
    SENSITIVE_PATTERNS,
)

__all__ = [
    # Setup
    "configure_logging",
    "get_module_logger",
    # Context
    "bind_delivery_context",
    "clear_delivery_context",
    # Formatters
    "mask_sensitive_data",
    "truncate_large_values",
    "SENSITIVE_PATTERNS",
]
