"""
WebSocket connection manager: per-socket room subscriptions on the change feed,
presence tracking and broadcast of ephemeral events (typing, presence_sync).
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from app.chat.change_feed import ChangeEvent, ChangeFeed, ChangeKind, Subscription, change_feed
from app.chat.presence import PresenceMeta, PresenceTracker, presence_tracker
from app.schema.chat import SessionUser

logger = logging.getLogger(__name__)

FEED_EVENTS = {
    ChangeKind.INSERT: "message_created",
    ChangeKind.UPDATE: "message_updated",
    ChangeKind.DELETE: "message_deleted",
}


@dataclass(eq=False)
class Connection:
    """One open socket and the rooms it listens to."""
    websocket: WebSocket
    user: SessionUser
    key: str = field(default_factory=lambda: str(uuid.uuid4()))
    subscriptions: Dict[uuid.UUID, Subscription] = field(default_factory=dict)

    async def send(self, event: str, room_id: Optional[uuid.UUID] = None, payload: Any = None) -> None:
        msg = {"event": event, "payload": payload}
        if room_id is not None:
            msg["room_id"] = str(room_id)
        await self.websocket.send_text(json.dumps(msg, default=str))


class ConnectionManager:
    """Tracks sockets per room and relays change-feed events to them."""

    def __init__(
        self,
        feed: Optional[ChangeFeed] = None,
        presence: Optional[PresenceTracker] = None,
    ) -> None:
        self.feed = feed or change_feed
        self.presence = presence or presence_tracker
        # room_id -> connections
        self._rooms: Dict[uuid.UUID, Set[Connection]] = {}
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def subscribe(self, conn: Connection, room_id: uuid.UUID) -> None:
        if room_id in conn.subscriptions:
            return

        async def forward(event: ChangeEvent) -> None:
            await conn.send(FEED_EVENTS[event.kind], event.room_id, event.record)

        def closed(sub: Subscription) -> None:
            if conn.subscriptions.get(room_id) is sub:
                del conn.subscriptions[room_id]
            if sub.revoked:
                self._revoke(conn, room_id)

        conn.subscriptions[room_id] = await self.feed.subscribe(
            room_id, forward, closed, user_id=conn.user.user_id
        )
        async with self._lock:
            self._rooms.setdefault(room_id, set()).add(conn)
        self.presence.track(
            room_id, conn.key, PresenceMeta(user_id=conn.user.user_id, user_name=conn.user.name)
        )
        logger.debug("Subscribed ws %s to room %s", conn.key, room_id)
        await self.broadcast_presence(room_id)

    async def unsubscribe(self, conn: Connection, room_id: uuid.UUID) -> None:
        sub = conn.subscriptions.pop(room_id, None)
        if sub is not None:
            await self.feed.unsubscribe(sub)
        async with self._lock:
            self._discard(conn, room_id)
        self.presence.untrack(room_id, conn.key)
        logger.debug("Unsubscribed ws %s from room %s", conn.key, room_id)
        await self.broadcast_presence(room_id)

    async def disconnect(self, conn: Connection) -> None:
        subs, conn.subscriptions = list(conn.subscriptions.values()), {}
        for sub in subs:
            await self.feed.unsubscribe(sub)
        async with self._lock:
            for rid in [rid for rid, conns in self._rooms.items() if conn in conns]:
                self._discard(conn, rid)
        left = self.presence.untrack_connection(conn.key)
        logger.debug("Disconnected ws %s from %d room(s)", conn.key, len(left))
        for rid in left:
            await self.broadcast_presence(rid)

    async def wait_for_pending(self) -> None:
        """Wait for revocation notices still being sent."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def connections(self, room_id: uuid.UUID) -> Set[Connection]:
        return set(self._rooms.get(room_id) or [])

    async def broadcast_presence(self, room_id: uuid.UUID) -> None:
        user_ids = self.presence.online_user_ids(room_id)
        await self.broadcast_to_room(
            room_id,
            "presence_sync",
            {"online_count": len(user_ids), "user_ids": sorted(str(u) for u in user_ids)},
        )

    async def broadcast_to_room(
        self,
        room_id: uuid.UUID,
        event: str,
        payload: Any,
        exclude: Optional[Connection] = None,
    ) -> None:
        """Send to every socket in the room except `exclude`. Dead sockets are dropped."""
        async with self._lock:
            conns = set(self._rooms.get(room_id) or [])
        dead = []
        for conn in conns:
            if conn is exclude:
                continue
            try:
                await conn.send(event, room_id, payload)
            except Exception as e:
                logger.warning("Broadcast send failed: %s", e)
                dead.append(conn)
        if dead:
            async with self._lock:
                for conn in dead:
                    self._discard(conn, room_id)

    def _revoke(self, conn: Connection, room_id: uuid.UUID) -> None:
        """The socket's user lost access: stop its room traffic now, tell it later."""
        self._discard(conn, room_id)
        self.presence.untrack(room_id, conn.key)
        logger.info("Access to room %s revoked for ws %s", room_id, conn.key)
        task = asyncio.get_running_loop().create_task(self._announce_revoke(conn, room_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _announce_revoke(self, conn: Connection, room_id: uuid.UUID) -> None:
        try:
            await conn.send("room_revoked", room_id, {"message": "You no longer have access to this room."})
        except Exception as e:
            logger.warning("Revoke notice failed for ws %s: %s", conn.key, e)
        await self.broadcast_presence(room_id)

    def _discard(self, conn: Connection, room_id: uuid.UUID) -> None:
        conns = self._rooms.get(room_id)
        if conns is None:
            return
        conns.discard(conn)
        if not conns:
            del self._rooms[room_id]


connection_manager = ConnectionManager()
