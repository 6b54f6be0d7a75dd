"""Idempotency cache abstract base class."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IdempotencyCache(ABC):
    """Abstract base class for idempotency cache implementations.

    The delivery coordinator stores the summary of every dispatched event
    under a key derived from the event id, so an event re-submitted within
    the TTL is answered from the cache instead of being fanned out again.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached response for ``key`` or None if missing/expired."""

    @abstractmethod
    def set(self, key: str, response: Dict[str, Any], ttl_seconds: int) -> None:
        """Cache ``response`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    def clear(self) -> None:
        """Clear all cached entries (for testing)."""

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Return implementation-specific cache statistics."""
