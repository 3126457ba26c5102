"""
In-memory change feed: subscribe/unsubscribe/publish message row changes by room_id.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """One row-level change on chat_messages, scoped to a room."""
    kind: ChangeKind
    room_id: uuid.UUID
    record: Dict[str, Any]

    @property
    def record_id(self) -> Optional[uuid.UUID]:
        raw = self.record.get("id")
        if raw is None:
            return None
        return raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))


EventHandler = Callable[[ChangeEvent], Awaitable[None]]
CloseHook = Callable[["Subscription"], None]


@dataclass(eq=False)
class Subscription:
    """
    Handle for one listener on one room. Inactive subscriptions drop every event.

    `revoked` is set when the listener lost access to the room, so on_close
    hooks can tell that apart from a lost connection.
    """
    room_id: uuid.UUID
    handler: EventHandler
    on_close: Optional[CloseHook] = None
    user_id: Optional[uuid.UUID] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    active: bool = True
    revoked: bool = False

    async def deliver(self, event: ChangeEvent) -> None:
        if not self.active or event.room_id != self.room_id:
            return
        await self.handler(event)


class ChangeFeed:
    """Tracks subscriptions per room and publishes change events in order."""

    def __init__(self) -> None:
        # room_id -> {subscription id -> Subscription}
        self._rooms: Dict[uuid.UUID, Dict[uuid.UUID, Subscription]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        room_id: uuid.UUID,
        handler: EventHandler,
        on_close: Optional[CloseHook] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Subscription:
        sub = Subscription(room_id=room_id, handler=handler, on_close=on_close, user_id=user_id)
        async with self._lock:
            self._rooms.setdefault(room_id, {})[sub.id] = sub
        logger.debug("Subscribed %s to room %s", sub.id, room_id)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Normal teardown; on_close is not called."""
        subscription.active = False
        async with self._lock:
            self._remove(subscription)
        logger.debug("Unsubscribed %s from room %s", subscription.id, subscription.room_id)

    async def publish(
        self,
        room_id: uuid.UUID,
        kind: ChangeKind,
        record: Dict[str, Any],
    ) -> ChangeEvent:
        """Deliver to every subscription on the room. Failing handlers are dropped."""
        event = ChangeEvent(kind=kind, room_id=room_id, record=record)
        async with self._lock:
            subs = list((self._rooms.get(room_id) or {}).values())
        dead: List[Subscription] = []
        for sub in subs:
            try:
                await sub.deliver(event)
            except Exception as e:
                logger.warning("Change delivery failed for %s: %s", sub.id, e)
                dead.append(sub)
        if dead:
            await self._drop(dead)
        return event

    async def close_room(self, room_id: uuid.UUID) -> int:
        """Drop every subscription on a room, as a lost connection would."""
        async with self._lock:
            subs = list((self._rooms.get(room_id) or {}).values())
        await self._drop(subs)
        return len(subs)

    async def revoke(
        self,
        room_id: uuid.UUID,
        user_ids: Optional[Iterable[uuid.UUID]] = None,
    ) -> int:
        """
        Drop the subscriptions of users who lost access to a room.

        With no user_ids every subscription on the room goes (room deleted).
        Subscriptions opened without a user_id only go in that case.
        """
        wanted = None if user_ids is None else set(user_ids)
        async with self._lock:
            subs = [
                sub for sub in (self._rooms.get(room_id) or {}).values()
                if wanted is None or sub.user_id in wanted
            ]
        for sub in subs:
            sub.revoked = True
        await self._drop(subs)
        if subs:
            logger.info("Revoked %d subscription(s) on room %s", len(subs), room_id)
        return len(subs)

    def subscriber_count(self, room_id: uuid.UUID) -> int:
        return len(self._rooms.get(room_id) or {})

    async def _drop(self, subs: List[Subscription]) -> None:
        async with self._lock:
            for sub in subs:
                sub.active = False
                self._remove(sub)
        for sub in subs:
            if sub.on_close:
                try:
                    sub.on_close(sub)
                except Exception:
                    logger.exception("on_close hook failed for %s", sub.id)

    def _remove(self, sub: Subscription) -> None:
        room = self._rooms.get(sub.room_id)
        if room is None:
            return
        room.pop(sub.id, None)
        if not room:
            del self._rooms[sub.room_id]


change_feed = ChangeFeed()
