"""Lookups the delivery subsystem reads but does not own.

Recipients, channel targets and the in-app inbox belong to the business
layer. These protocols describe what delivery needs from them; the
in-memory implementations back development and tests.
"""

import threading
from typing import Any, Dict, List, Optional, Protocol

from infrastructure.logging import get_module_logger
from modules.delivery.models import ChannelTarget, Recipient, new_id, utc_now

logger = get_module_logger()


class RecipientDirectory(Protocol):
    def get(self, user_id: str) -> Optional[Recipient]: ...

    def deactivate_push_token(self, user_id: str, token: str) -> None: ...


class TargetStore(Protocol):
    def get(self, target_id: str) -> Optional[ChannelTarget]: ...

    def active_targets(self, owner_id: str, notification_type: str) -> List[ChannelTarget]: ...


class InAppInbox(Protocol):
    def append(self, user_id: str, item: Dict[str, Any]) -> str: ...


class InMemoryRecipientDirectory:
    def __init__(self, recipients: Optional[List[Recipient]] = None):
        self._recipients: Dict[str, Recipient] = {}
        self._lock = threading.Lock()
        for recipient in recipients or []:
            self.add(recipient)

    def add(self, recipient: Recipient) -> None:
        with self._lock:
            self._recipients[recipient.user_id] = recipient

    def get(self, user_id: str) -> Optional[Recipient]:
        with self._lock:
            return self._recipients.get(user_id)

    def deactivate_push_token(self, user_id: str, token: str) -> None:
        with self._lock:
            recipient = self._recipients.get(user_id)
            if recipient is None or token not in recipient.push_tokens:
                return
            self._recipients[user_id] = recipient.model_copy(
                update={"push_tokens": [t for t in recipient.push_tokens if t != token]}
            )
        logger.info("push_token_deactivated", user_id=user_id)


class InMemoryTargetStore:
    def __init__(self, targets: Optional[List[ChannelTarget]] = None):
        self._targets: Dict[str, ChannelTarget] = {}
        self._lock = threading.Lock()
        for target in targets or []:
            self.add(target)

    def add(self, target: ChannelTarget) -> None:
        with self._lock:
            self._targets[target.id] = target

    def remove(self, target_id: str) -> None:
        with self._lock:
            self._targets.pop(target_id, None)

    def get(self, target_id: str) -> Optional[ChannelTarget]:
        """Return the target regardless of ``is_active``."""
        with self._lock:
            return self._targets.get(target_id)

    def active_targets(self, owner_id: str, notification_type: str) -> List[ChannelTarget]:
        with self._lock:
            targets = list(self._targets.values())
        return [
            t
            for t in targets
            if t.owner_id == owner_id and t.is_active and t.subscribes_to(notification_type)
        ]


class InMemoryInbox:
    """Per-user list of in-app notifications."""

    def __init__(self):
        self._items: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def append(self, user_id: str, item: Dict[str, Any]) -> str:
        entry = {"id": new_id(), "created_at": utc_now().isoformat(), "read": False, **item}
        with self._lock:
            self._items.setdefault(user_id, []).append(entry)
        return entry["id"]

    def list(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._items.get(user_id, []))
