"""Infrastructure idempotency cache.

Dedupes repeated dispatches of the same event. Delivery is at-least-once;
the cache narrows the window in which a re-submitted event is fanned out
a second time.

Usage:

    from infrastructure.idempotency import IdempotencyKeyBuilder, create_cache

    cache = create_cache(settings)
    key = IdempotencyKeyBuilder("delivery").build("dispatch", event_id=event.id)
    cached = cache.get(key)
"""

from infrastructure.idempotency.cache import IdempotencyCache
from infrastructure.idempotency.dynamodb import DynamoDBCache
from infrastructure.idempotency.factory import create_cache
from infrastructure.idempotency.key_builder import IdempotencyKeyBuilder
from infrastructure.idempotency.memory import InMemoryCache

__all__ = [
    "IdempotencyCache",
    "DynamoDBCache",
    "InMemoryCache",
    "IdempotencyKeyBuilder",
    "create_cache",
]
