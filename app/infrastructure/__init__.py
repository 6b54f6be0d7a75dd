"""Infrastructure modules for the notification relay.

Centralized infrastructure components:
- configuration: Settings management (settings, Settings)
- logging: Structured logging (get_module_logger, bind_delivery_context)
- operations: Operation results and error classification
- idempotency: Dispatch dedupe cache
- resilience: Per-provider throttling
"""
