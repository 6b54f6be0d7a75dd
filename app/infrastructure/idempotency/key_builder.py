"""Idempotency key builder for consistent key generation."""

import hashlib
from typing import Any


class IdempotencyKeyBuilder:
    """Build deterministic idempotency keys.

    Keys are namespaced and hash their components, so the same logical
    operation always maps to the same key regardless of argument order.

    Example:
        >>> builder = IdempotencyKeyBuilder(namespace="delivery")
        >>> builder.build(operation="dispatch", event_id="evt-1")
        'delivery:dispatch:...'
    """

    def __init__(self, namespace: str):
        self.namespace = namespace

    def build(self, operation: str, **components: Any) -> str:
        """Build an idempotency key from an operation name and components."""
        key_parts = [self.namespace, operation]
        key_parts.extend(f"{k}={v}" for k, v in sorted(components.items()))
        key_string = "|".join(str(part) for part in key_parts)

        key_hash = hashlib.sha256(key_string.encode()).hexdigest()[:16]

        return f"{self.namespace}:{operation}:{key_hash}"
