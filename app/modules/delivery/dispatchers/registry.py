"""Channel to dispatcher mapping."""

import threading
from typing import Dict, Iterable, List, Optional

from infrastructure.operations import OperationResult
from modules.delivery.dispatchers.base import ChannelDispatcher
from modules.delivery.errors import ConfigurationError
from modules.delivery.models import Channel


class DispatcherRegistry:
    def __init__(self, dispatchers: Optional[Iterable[ChannelDispatcher]] = None):
        self._dispatchers: Dict[Channel, ChannelDispatcher] = {}
        self._lock = threading.Lock()
        for dispatcher in dispatchers or []:
            self.register(dispatcher)

    def register(self, dispatcher: ChannelDispatcher) -> None:
        with self._lock:
            self._dispatchers[dispatcher.channel] = dispatcher

    def get(self, channel: Channel) -> ChannelDispatcher:
        """Raises ConfigurationError when no dispatcher serves ``channel``."""
        with self._lock:
            dispatcher = self._dispatchers.get(channel)
        if dispatcher is None:
            raise ConfigurationError(f"No dispatcher registered for {channel.value}")
        return dispatcher

    @property
    def channels(self) -> List[Channel]:
        with self._lock:
            return list(self._dispatchers)

    def health_check(self) -> Dict[str, OperationResult]:
        with self._lock:
            dispatchers = list(self._dispatchers.values())
        return {d.channel.value: d.health_check() for d in dispatchers}
