"""Tests for relaying feed events and presence to WebSocket connections."""
import json
import uuid

import pytest

from app.chat.change_feed import ChangeKind
from app.chat.connection_manager import Connection, ConnectionManager
from app.schema.chat import SessionUser


class FakeSocket:
    def __init__(self, broken=False):
        self.sent = []
        self.broken = broken

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def events(self, name):
        return [m for m in self.sent if m["event"] == name]


def make_conn(name, broken=False):
    user = SessionUser(user_id=uuid.uuid4(), email=f"{name.lower()}@agency.test", name=name)
    return Connection(websocket=FakeSocket(broken), user=user)


@pytest.fixture
def manager(feed, presence):
    return ConnectionManager(feed=feed, presence=presence)


@pytest.fixture
def room_id():
    return uuid.uuid4()


async def test_feed_events_reach_subscribed_sockets(manager, feed, room_id):
    conn = make_conn("Alice")
    await manager.subscribe(conn, room_id)
    record = {"id": str(uuid.uuid4()), "content": "hi"}

    await feed.publish(room_id, ChangeKind.INSERT, record)
    await feed.publish(room_id, ChangeKind.DELETE, record)

    relayed = [m for m in conn.websocket.sent if m["event"].startswith("message_")]
    assert [m["event"] for m in relayed] == ["message_created", "message_deleted"]
    assert relayed[0]["payload"] == record
    assert relayed[0]["room_id"] == str(room_id)


async def test_subscribe_twice_keeps_one_subscription(manager, feed, room_id):
    conn = make_conn("Alice")
    await manager.subscribe(conn, room_id)
    await manager.subscribe(conn, room_id)
    assert feed.subscriber_count(room_id) == 1


async def test_presence_sync_counts_users(manager, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    latest = alice.websocket.events("presence_sync")[-1]["payload"]
    assert latest["online_count"] == 2

    await manager.unsubscribe(bob, room_id)
    assert alice.websocket.events("presence_sync")[-1]["payload"]["online_count"] == 1


async def test_typing_skips_the_sender(manager, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    await manager.broadcast_to_room(room_id, "user_typing", {"name": "Alice", "typing": True}, exclude=alice)

    assert alice.websocket.events("user_typing") == []
    assert bob.websocket.events("user_typing")[0]["payload"]["typing"] is True


async def test_dead_socket_is_dropped_on_broadcast(manager, room_id):
    alive, dead = make_conn("Alice"), make_conn("Bob", broken=True)
    await manager.subscribe(alive, room_id)
    manager._rooms[room_id].add(dead)

    await manager.broadcast_to_room(room_id, "user_typing", {})

    assert manager.connections(room_id) == {alive}


async def test_disconnect_releases_everything(manager, feed, presence, room_id):
    conn = make_conn("Alice")
    other_room = uuid.uuid4()
    await manager.subscribe(conn, room_id)
    await manager.subscribe(conn, other_room)

    await manager.disconnect(conn)

    assert conn.subscriptions == {}
    assert feed.subscriber_count(room_id) == 0
    assert presence.online_count(other_room) == 0
    assert manager.connections(room_id) == set()


async def test_closed_feed_forgets_subscription(manager, feed, room_id):
    conn = make_conn("Alice")
    await manager.subscribe(conn, room_id)
    await feed.close_room(room_id)
    assert room_id not in conn.subscriptions


async def test_disconnect_tells_the_room_who_left(manager, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    await manager.disconnect(alice)

    assert bob.websocket.events("presence_sync")[-1]["payload"] == {
        "online_count": 1,
        "user_ids": [str(bob.user.user_id)],
    }


async def test_revoked_member_stops_receiving_room_events(manager, feed, presence, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    assert await feed.revoke(room_id, [bob.user.user_id]) == 1
    await manager.wait_for_pending()
    bob.websocket.sent.clear()
    await feed.publish(room_id, ChangeKind.INSERT, {"id": str(uuid.uuid4()), "content": "members only"})
    await manager.broadcast_to_room(room_id, "user_typing", {"name": "Alice", "typing": True}, exclude=alice)

    assert bob.websocket.sent == []
    assert room_id not in bob.subscriptions
    assert manager.connections(room_id) == {alice}
    assert presence.online_user_ids(room_id) == {alice.user.user_id}
    assert [m["event"] for m in alice.websocket.sent if m["event"].startswith("message_")] == ["message_created"]


async def test_revoked_socket_is_told_and_room_resynced(manager, feed, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    await feed.revoke(room_id, [bob.user.user_id])
    await manager.wait_for_pending()

    notice = bob.websocket.events("room_revoked")
    assert [m["room_id"] for m in notice] == [str(room_id)]
    assert alice.websocket.events("presence_sync")[-1]["payload"]["online_count"] == 1


async def test_revoking_a_whole_room_releases_every_socket(manager, feed, room_id):
    alice, bob = make_conn("Alice"), make_conn("Bob")
    await manager.subscribe(alice, room_id)
    await manager.subscribe(bob, room_id)

    assert await feed.revoke(room_id) == 2
    await manager.wait_for_pending()

    assert feed.subscriber_count(room_id) == 0
    assert manager.connections(room_id) == set()
    assert alice.subscriptions == {} and bob.subscriptions == {}
