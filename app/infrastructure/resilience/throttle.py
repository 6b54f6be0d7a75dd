"""Per-provider throttling.

Each external provider (GC Notify SMS, a Teams webhook, FCM...) gets its own
ProviderThrottle combining:

- a bounded semaphore capping in-flight calls, and
- a sliding one-minute window capping calls per minute, optionally keyed
  (Teams limits posts per webhook URL).

Throttles are shared by every thread dispatching to the same provider and
are guarded by their own locks, independently of each other.

Usage:
    throttle = throttles.get("teams")
    try:
        with throttle.slot(key=target.webhook_url):
            response = requests.post(...)
    except RateLimitExceeded as e:
        return DeliveryOutcome.rate_limited(e.retry_after)
"""

import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Deque, Dict, Iterator, Optional, Tuple

from infrastructure.logging import get_module_logger

if TYPE_CHECKING:
    from infrastructure.configuration.infrastructure.throttle import ThrottleSettings

logger = get_module_logger()

WINDOW_SECONDS = 60.0


class RateLimitExceeded(Exception):
    """Raised when a provider slot cannot be obtained."""

    def __init__(self, provider: str, retry_after: int):
        super().__init__(f"{provider} rate limit reached, retry in {retry_after}s")
        self.provider = provider
        self.retry_after = retry_after


class ProviderThrottle:
    """Concurrency cap plus per-minute budget for one provider."""

    def __init__(
        self,
        name: str,
        concurrency: int,
        per_minute: int = 0,
        acquire_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if per_minute < 0:
            raise ValueError("per_minute must be >= 0")
        self.name = name
        self.concurrency = concurrency
        self.per_minute = per_minute
        self.acquire_timeout = acquire_timeout
        self._clock = clock
        self._semaphore = threading.BoundedSemaphore(concurrency)
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._in_flight = 0
        self._peak_in_flight = 0

    def _reserve_window(self, key: str) -> Tuple[Optional[int], Optional[float]]:
        """Record a call in the window.

        Returns ``(retry_after, None)`` when the budget is spent, otherwise
        ``(None, stamp)`` where ``stamp`` identifies the recorded call.
        """
        if not self.per_minute:
            return None, None
        with self._lock:
            now = self._clock()
            self._sweep(now)
            window = self._windows.setdefault(key, deque())
            while window and now - window[0] >= WINDOW_SECONDS:
                window.popleft()
            if len(window) >= self.per_minute:
                return max(1, math.ceil(WINDOW_SECONDS - (now - window[0]))), None
            window.append(now)
            return None, now

    def _refund_window(self, key: str, stamp: Optional[float]) -> None:
        """Give back a token recorded by a call that never went out."""
        if stamp is None:
            return
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return
            if stamp in window:
                window.remove(stamp)
            if not window:
                del self._windows[key]

    def _sweep(self, now: float) -> None:
        # Caller holds self._lock
        if now - self._last_sweep < WINDOW_SECONDS:
            return
        self._last_sweep = now
        stale = [k for k, w in self._windows.items() if not w or now - w[-1] >= WINDOW_SECONDS]
        for k in stale:
            del self._windows[k]

    @contextmanager
    def slot(self, key: str = "") -> Iterator[None]:
        """Hold one concurrency slot and one per-minute token for the block.

        A token taken for a call that times out waiting for a concurrency
        slot is given back.

        Raises:
            RateLimitExceeded: When the minute budget for ``key`` is spent or
                no concurrency slot frees up within ``acquire_timeout``.
        """
        retry_after, stamp = self._reserve_window(key)
        if retry_after is not None:
            logger.warning(
                "provider_rate_limited",
                provider=self.name,
                per_minute=self.per_minute,
                retry_after=retry_after,
            )
            raise RateLimitExceeded(self.name, retry_after)

        if not self._semaphore.acquire(timeout=self.acquire_timeout):
            self._refund_window(key, stamp)
            logger.warning(
                "provider_concurrency_exhausted",
                provider=self.name,
                concurrency=self.concurrency,
            )
            raise RateLimitExceeded(self.name, 1)

        with self._lock:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "provider": self.name,
                "in_flight": self._in_flight,
                "peak_in_flight": self._peak_in_flight,
                "concurrency": self.concurrency,
                "per_minute": self.per_minute,
                "tracked_keys": len(self._windows),
            }


class ThrottleRegistry:
    """Lazily creates one ProviderThrottle per provider name."""

    def __init__(
        self,
        default_concurrency: int = 8,
        default_per_minute: int = 0,
        acquire_timeout: float = 30.0,
        overrides: Optional[Dict[str, Dict[str, int]]] = None,
    ):
        self._default_concurrency = default_concurrency
        self._default_per_minute = default_per_minute
        self._acquire_timeout = acquire_timeout
        self._overrides = overrides or {}
        self._throttles: Dict[str, ProviderThrottle] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, throttle_settings: "ThrottleSettings") -> "ThrottleRegistry":
        return cls(
            default_concurrency=throttle_settings.default_concurrency,
            default_per_minute=throttle_settings.default_per_minute,
            acquire_timeout=throttle_settings.acquire_timeout_seconds,
            overrides=throttle_settings.overrides,
        )

    def get(self, provider: str, per_minute: Optional[int] = None) -> ProviderThrottle:
        """Return the throttle for ``provider``, creating it on first use.

        ``per_minute`` sets the provider's minute budget when no override is
        configured for it (used for Teams' documented webhook limit).
        """
        with self._lock:
            throttle = self._throttles.get(provider)
            if throttle is None:
                override = self._overrides.get(provider, {})
                default_rate = (
                    per_minute if per_minute is not None else self._default_per_minute
                )
                throttle = ProviderThrottle(
                    name=provider,
                    concurrency=override.get("concurrency", self._default_concurrency),
                    per_minute=override.get("per_minute", default_rate),
                    acquire_timeout=self._acquire_timeout,
                )
                self._throttles[provider] = throttle
                logger.debug(
                    "provider_throttle_created",
                    provider=provider,
                    concurrency=throttle.concurrency,
                    per_minute=throttle.per_minute,
                )
            return throttle

    def get_stats(self) -> Dict[str, dict]:
        with self._lock:
            throttles = list(self._throttles.values())
        return {t.name: t.get_stats() for t in throttles}
