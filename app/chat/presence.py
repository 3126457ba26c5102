"""
Ephemeral per-room presence. Nothing here is persisted; a connection's presence
lives exactly as long as it stays tracked.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Set

from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PresenceMeta:
    user_id: uuid.UUID
    user_name: str = ""
    online_at: datetime = field(default_factory=utcnow)


# listener(room_id, online_count, user_ids)
PresenceListener = Callable[[uuid.UUID, int, Set[uuid.UUID]], None]


class PresenceTracker:
    """
    Who is looking at which room.

    Keyed by connection, counted by user: one user with three open tabs is one
    online user. Every track/untrack fires a sync to the room's listeners.
    """

    def __init__(self) -> None:
        # room_id -> {connection key -> meta}
        self._rooms: Dict[uuid.UUID, Dict[str, PresenceMeta]] = {}
        self._listeners: Dict[uuid.UUID, List[PresenceListener]] = {}

    def track(self, room_id: uuid.UUID, connection_key: str, meta: PresenceMeta) -> None:
        self._rooms.setdefault(room_id, {})[connection_key] = meta
        logger.debug("Presence: %s online in %s", meta.user_id, room_id)
        self._sync(room_id)

    def untrack(self, room_id: uuid.UUID, connection_key: str) -> None:
        room = self._rooms.get(room_id)
        if not room or connection_key not in room:
            return
        del room[connection_key]
        if not room:
            del self._rooms[room_id]
        self._sync(room_id)

    def untrack_connection(self, connection_key: str) -> List[uuid.UUID]:
        """Remove a connection from every room it was in; returns those rooms."""
        rooms = [rid for rid, conns in self._rooms.items() if connection_key in conns]
        for rid in rooms:
            self.untrack(rid, connection_key)
        return rooms

    def online_user_ids(self, room_id: uuid.UUID) -> Set[uuid.UUID]:
        return {meta.user_id for meta in (self._rooms.get(room_id) or {}).values()}

    def online_count(self, room_id: uuid.UUID) -> int:
        return len(self.online_user_ids(room_id))

    def listen(self, room_id: uuid.UUID, listener: PresenceListener) -> Callable[[], None]:
        """Register a sync listener. Returns the function that removes it."""
        self._listeners.setdefault(room_id, []).append(listener)

        def unlisten() -> None:
            listeners = self._listeners.get(room_id)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[room_id]

        return unlisten

    def _sync(self, room_id: uuid.UUID) -> None:
        user_ids = self.online_user_ids(room_id)
        for listener in list(self._listeners.get(room_id) or []):
            try:
                listener(room_id, len(user_ids), user_ids)
            except Exception:
                logger.exception("Presence listener failed for room %s", room_id)


presence_tracker = PresenceTracker()
