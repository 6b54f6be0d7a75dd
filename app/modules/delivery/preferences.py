"""Channel preference storage and resolution.

The resolver answers one question: which recipient channels should an
event reach right now? It applies the system defaults, priority minimums and
quiet hours. Slack/Teams/webhook targets are resolved by the TargetStore.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, time
from typing import Callable, Dict, Optional, Protocol, Tuple

import pytz  # type: ignore

from infrastructure.logging import get_module_logger
from integrations.aws import dynamodb
from modules.delivery.errors import ConfigurationError
from modules.delivery.models import (
    RECIPIENT_CHANNELS,
    Channel,
    ChannelPreference,
    Priority,
    utc_now,
)

logger = get_module_logger()


def default_preference(user_id: str, notification_type: str) -> ChannelPreference:
    """System default used when no row is stored: every channel on, NORMAL minimum."""
    return ChannelPreference(user_id=user_id, notification_type=notification_type)


class PreferenceStore(Protocol):
    def get(self, user_id: str, notification_type: str) -> Optional[ChannelPreference]: ...

    def save(self, preference: ChannelPreference) -> None: ...


class InMemoryPreferenceStore:
    """Dict-backed store keyed by (user_id, notification_type)."""

    def __init__(self):
        self._items: Dict[Tuple[str, str], ChannelPreference] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, notification_type: str) -> Optional[ChannelPreference]:
        with self._lock:
            return self._items.get((user_id, notification_type))

    def save(self, preference: ChannelPreference) -> None:
        with self._lock:
            self._items[(preference.user_id, preference.notification_type)] = preference


class DynamoDBPreferenceStore:
    """Preferences table with partition key ``user_id`` and sort key
    ``notification_type``; the preference body is a JSON document."""

    def __init__(self, table_name: str = "channel-preferences"):
        self.table_name = table_name

    def get(self, user_id: str, notification_type: str) -> Optional[ChannelPreference]:
        result = dynamodb.get_item(
            table_name=self.table_name,
            Key={
                "user_id": {"S": user_id},
                "notification_type": {"S": notification_type},
            },
        )
        if not result.is_success:
            # Preferences degrade to defaults rather than blocking delivery
            logger.warning(
                "preference_lookup_failed",
                user_id=user_id,
                notification_type=notification_type,
                error=result.message,
            )
            return None
        item = (result.data or {}).get("Item")
        if not item:
            return None
        return ChannelPreference.model_validate_json(item["document"]["S"])

    def save(self, preference: ChannelPreference) -> None:
        result = dynamodb.put_item(
            table_name=self.table_name,
            Item={
                "user_id": {"S": preference.user_id},
                "notification_type": {"S": preference.notification_type},
                "document": {"S": preference.model_dump_json()},
            },
        )
        if not result.is_success:
            raise ConfigurationError(
                f"Could not save preference: {result.message}", response=result
            )


@dataclass(frozen=True)
class PreferenceDecision:
    channels: Tuple[Channel, ...]
    suppressed: bool = False
    reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.channels


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(local: time, start: time, end: time) -> bool:
    """True when ``local`` is in [start, end), wrapping across midnight.

    ``start == end`` is an empty window.
    """
    if start == end:
        return False
    if start < end:
        return start <= local < end
    return local >= start or local < end


class PreferenceResolver:
    """Resolve which recipient channels an event may use."""

    def __init__(
        self,
        store: PreferenceStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.clock = clock

    def preference_for(self, user_id: str, notification_type: str) -> ChannelPreference:
        return self.store.get(user_id, notification_type) or default_preference(
            user_id, notification_type
        )

    def resolve(
        self,
        user_id: str,
        notification_type: str,
        priority: Priority,
        now: Optional[datetime] = None,
    ) -> PreferenceDecision:
        preference = self.preference_for(user_id, notification_type)
        now = now or self.clock()

        if priority != Priority.CRITICAL and self._is_quiet(preference, now):
            logger.info(
                "delivery_suppressed_quiet_hours",
                user_id=user_id,
                notification_type=notification_type,
                priority=priority.label,
            )
            return PreferenceDecision(channels=(), suppressed=True, reason="quiet_hours")

        if priority < preference.minimum_priority:
            return PreferenceDecision(
                channels=(), suppressed=True, reason="below_minimum_priority"
            )

        channels = tuple(c for c in RECIPIENT_CHANNELS if preference.is_enabled(c))
        if not channels:
            return PreferenceDecision(channels=(), reason="all_channels_disabled")
        return PreferenceDecision(channels=channels)

    def _is_quiet(self, preference: ChannelPreference, now: datetime) -> bool:
        if not preference.quiet_hours_start or not preference.quiet_hours_end:
            return False
        try:
            zone = pytz.timezone(preference.time_zone)
        except pytz.UnknownTimeZoneError:
            logger.warning(
                "preference_invalid_time_zone",
                user_id=preference.user_id,
                time_zone=preference.time_zone,
            )
            zone = pytz.utc
        if now.tzinfo is None:
            now = pytz.utc.localize(now)
        local = now.astimezone(zone).time().replace(second=0, microsecond=0)
        return in_quiet_hours(
            local,
            _parse_hhmm(preference.quiet_hours_start),
            _parse_hhmm(preference.quiet_hours_end),
        )
