"""Tests for the chat REST endpoints and WebSocket channel."""
import uuid

import pytest
from starlette.websockets import WebSocketDisconnect

from app.core.config import settings
from app.crud import chat_message_crud
from app.router.api.v1 import chat as chat_router
from app.service import upload_service
from app.session import session_payload

BASE = "/api/v1/chat"


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "ok"}


def test_requests_without_session_are_rejected(api_client):
    response = api_client.get(f"{BASE}/rooms")
    assert response.status_code in (401, 403)


class TestRoomEndpoints:
    def test_create_list_and_get(self, api_client, login, alice, bob):
        login(alice)
        response = api_client.post(
            f"{BASE}/rooms",
            json={"name": "Launch", "members": [{"user_id": str(bob.id), "permission": "WRITE"}]},
        )
        assert response.status_code == 201
        room = response.json()
        assert room["name"] == "Launch"
        assert room["room_type"] == "GENERAL"

        listing = api_client.get(f"{BASE}/rooms").json()
        assert listing["total"] == 1
        assert listing["items"][0]["participant_count"] == 2

        assert api_client.get(f"{BASE}/rooms/{room['id']}").status_code == 200

        members = api_client.get(f"{BASE}/rooms/{room['id']}/members").json()
        assert {m["permission"] for m in members} == {"ADMIN", "WRITE"}

    def test_blank_name_returns_error_detail(self, api_client, login, alice):
        login(alice)
        response = api_client.post(f"{BASE}/rooms", json={"name": "  "})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_non_member_gets_404(self, api_client, login, alice, carol, make_room):
        room = make_room("Private", {alice: "ADMIN"})
        login(carol)
        response = api_client.get(f"{BASE}/rooms/{room.id}")
        assert response.status_code == 404
        assert response.json()["detail"] == {"code": "NOT_FOUND", "message": "Room not found."}

    def test_update_archive_and_delete(self, api_client, login, alice, bob, make_room):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})

        login(bob)
        assert api_client.patch(f"{BASE}/rooms/{room.id}", json={"name": "Mine"}).status_code == 403

        login(alice)
        patched = api_client.patch(f"{BASE}/rooms/{room.id}", json={"description": "Day to day"})
        assert patched.json()["description"] == "Day to day"

        archived = api_client.post(f"{BASE}/rooms/{room.id}/archive", json={"archived": True})
        assert archived.json()["is_archived"] is True

        assert api_client.delete(f"{BASE}/rooms/{room.id}").status_code == 204
        assert api_client.get(f"{BASE}/rooms/{room.id}").status_code == 404
        assert api_client.get(f"{BASE}/rooms").json()["total"] == 0


class TestMessageEndpoints:
    def test_post_and_list_messages(self, api_client, login, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        login(alice)
        mid = str(uuid.uuid4())

        created = api_client.post(f"{BASE}/rooms/{room.id}/messages", json={"id": mid, "content": "first"})
        assert created.status_code == 201
        assert created.json()["id"] == mid
        api_client.post(f"{BASE}/rooms/{room.id}/messages", json={"content": "second"})

        page = api_client.get(f"{BASE}/rooms/{room.id}/messages", params={"limit": 1}).json()
        assert [m["content"] for m in page["items"]] == ["second"]
        assert page["total"] == 2
        assert page["has_more"] is True

        older = api_client.get(
            f"{BASE}/rooms/{room.id}/messages", params={"limit": 10, "before_id": page["items"][0]["id"]}
        ).json()
        assert [m["content"] for m in older["items"]] == ["first"]
        assert older["has_more"] is False

    def test_edit_and_delete_message(self, db, api_client, login, alice, bob, make_room):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})
        login(bob)
        mid = api_client.post(f"{BASE}/rooms/{room.id}/messages", json={"content": "typo"}).json()["id"]

        edited = api_client.patch(f"{BASE}/messages/{mid}", json={"content": "fixed"})
        assert edited.json()["is_edited"] is True

        login(alice)
        assert api_client.patch(f"{BASE}/messages/{mid}", json={"content": "nope"}).status_code == 403
        assert api_client.delete(f"{BASE}/messages/{mid}").status_code == 204

        row = chat_message_crud.get_by_id(db, message_id=uuid.UUID(mid))
        assert row.is_deleted is True
        assert api_client.get(f"{BASE}/rooms/{room.id}/messages").json()["items"] == []

    def test_deleting_a_deleted_message_needs_membership(
        self, api_client, login, alice, carol, make_room, add_message
    ):
        room = make_room("Ops", {alice: "ADMIN"})
        gone = add_message(room, alice, is_deleted=True)

        login(carol)
        assert api_client.delete(f"{BASE}/messages/{gone.id}").status_code == 404
        login(alice)
        assert api_client.delete(f"{BASE}/messages/{gone.id}").status_code == 204

    def test_read_only_member_cannot_post(self, api_client, login, alice, carol, make_room):
        room = make_room("Ops", {alice: "ADMIN", carol: "READ"})
        login(carol)
        response = api_client.post(f"{BASE}/rooms/{room.id}/messages", json={"content": "hi"})
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"


class TestReadEndpoints:
    def test_unread_read_and_dashboard(self, api_client, login, alice, bob, make_room, add_message):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})
        for minute in range(3):
            add_message(room, bob, content=f"m{minute}", minutes=minute)
        login(alice)

        unread = api_client.get(f"{BASE}/rooms/{room.id}/unread").json()
        assert unread == {"room_id": str(room.id), "unread_count": 3}

        dashboard = api_client.get(f"{BASE}/dashboard").json()
        assert dashboard["total_unread"] == 3
        assert dashboard["recent_rooms"][0]["last_message"] == "m2"

        assert api_client.post(f"{BASE}/rooms/{room.id}/read").status_code == 200
        assert api_client.get(f"{BASE}/rooms/{room.id}/unread").json()["unread_count"] == 0

    def test_posted_created_at_is_ignored(self, api_client, login, alice, bob, make_room):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})
        messages = f"{BASE}/rooms/{room.id}/messages"

        login(alice)
        ahead = api_client.post(messages, json={"content": "ahead", "created_at": "2099-01-01T00:00:00Z"})
        assert ahead.status_code == 201
        assert not ahead.json()["created_at"].startswith("2099")
        login(bob)
        api_client.post(f"{BASE}/rooms/{room.id}/read")
        assert api_client.get(f"{BASE}/rooms/{room.id}/unread").json()["unread_count"] == 0

        login(alice)
        api_client.post(messages, json={"content": "behind", "created_at": "2000-01-01T00:00:00Z"})
        login(bob)
        assert api_client.get(f"{BASE}/rooms/{room.id}/unread").json()["unread_count"] == 1

    def test_listing_messages_marks_room_read(self, api_client, login, alice, bob, make_room, add_message):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})
        add_message(room, bob)
        login(alice)
        api_client.get(f"{BASE}/rooms/{room.id}/messages")
        assert api_client.get(f"{BASE}/rooms/{room.id}/unread").json()["unread_count"] == 0


def test_upload_endpoint_reports_each_file(api_client, login, alice):
    login(alice)
    response = api_client.post(
        f"{BASE}/uploads",
        files=[
            ("files", ("notes.txt", b"hello", "text/plain")),
            ("files", ("run.exe", b"MZ", "application/x-msdownload")),
        ],
    )
    assert response.status_code == 200
    body = response.json()
    assert [f["name"] for f in body["uploaded"]] == ["notes.txt"]
    assert body["uploaded"][0]["url"].startswith("/uploads/chat/")
    assert [f["name"] for f in body["failed"]] == ["run.exe"]


def test_upload_reads_no_more_than_the_size_limit(api_client, login, alice, monkeypatch):
    monkeypatch.setattr(settings, "CHAT_MAX_FILE_SIZE", 8)
    read_sizes = []
    upload_many = upload_service.upload_many

    def recording(batch):
        batch = list(batch)
        read_sizes.extend(len(content) for _, content, _ in batch)
        return upload_many(batch)

    monkeypatch.setattr(upload_service, "upload_many", recording)
    login(alice)
    response = api_client.post(
        f"{BASE}/uploads",
        files=[
            ("files", ("big.txt", b"x" * 1000, "text/plain")),
            ("files", ("small.txt", b"tiny", "text/plain")),
        ],
    )

    assert read_sizes == [9, 4]
    body = response.json()
    assert [f["name"] for f in body["uploaded"]] == ["small.txt"]
    assert body["failed"][0]["name"] == "big.txt"
    assert "exceeds" in body["failed"][0]["message"]


class TestWebSocket:
    @pytest.fixture
    def token_for(self, monkeypatch):
        sessions = {}
        monkeypatch.setattr(chat_router, "get_session", lambda token: sessions.get(token))

        def _token_for(user):
            token = uuid.uuid4().hex
            sessions[token] = session_payload(user)
            return token

        return _token_for

    def test_missing_token_closes_socket(self, api_client):
        with api_client.websocket_connect(f"{BASE}/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_text()
        assert exc.value.code == 4001

    def test_subscribe_broadcasts_presence(self, api_client, token_for, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        with api_client.websocket_connect(f"{BASE}/ws?token={token_for(alice)}") as ws:
            ws.send_json({"action": "subscribe", "room_id": str(room.id)})
            event = ws.receive_json()
            assert event["event"] == "presence_sync"
            assert event["room_id"] == str(room.id)
            assert event["payload"] == {"online_count": 1, "user_ids": [str(alice.id)]}

    def test_non_member_cannot_subscribe(self, api_client, token_for, alice, carol, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        with api_client.websocket_connect(f"{BASE}/ws?token={token_for(carol)}") as ws:
            ws.send_json({"action": "subscribe", "room_id": str(room.id)})
            event = ws.receive_json()
            assert event["event"] == "error"
            assert event["payload"]["code"] == "FORBIDDEN"

    def test_bad_requests_get_error_events(self, api_client, token_for, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        with api_client.websocket_connect(f"{BASE}/ws?token={token_for(alice)}") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["payload"]["code"] == "INVALID_JSON"
            ws.send_json({"action": "subscribe"})
            assert ws.receive_json()["payload"]["code"] == "MISSING_ROOM_ID"
            ws.send_json({"action": "dance", "room_id": str(room.id)})
            assert ws.receive_json()["payload"]["code"] == "UNKNOWN_ACTION"
