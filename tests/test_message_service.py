"""Tests for message persistence and its change-feed events."""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.chat.change_feed import ChangeKind
from app.core.exceptions import Forbidden, NotFound, PersistenceError, ValidationError
from app.crud import chat_message_crud, chat_room_crud, message_attachment_crud
from app.schema.chat import MessageCreateBody, UploadedFile
from app.service.message_service import MessageService
from app.utils.clock import ensure_utc, utcnow
from conftest import T0


@pytest.fixture
def events():
    return []


@pytest.fixture
def listening(feed, events):
    """Subscribe `events` to a room: await listening(room)."""
    async def _listen(room):
        async def handler(event):
            events.append(event)

        await feed.subscribe(room.id, handler)

    return _listen


class TestCreateMessage:
    async def test_insert_keeps_client_id_and_publishes(self, db, feed, events, listening, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        await listening(room)
        mid = uuid.uuid4()

        msg = await MessageService(db, feed).create_message(
            alice.id, room.id, MessageCreateBody(id=mid, content="  hello  ")
        )

        assert msg.id == mid
        assert msg.content == "hello"
        assert msg.message_type == "TEXT"
        assert [e.kind for e in events] == [ChangeKind.INSERT]
        assert events[0].record_id == mid
        db.expire_all()
        assert chat_room_crud.get_by_id(db, room_id=room.id).last_message_at is not None

    async def test_resending_an_id_is_idempotent(self, db, feed, events, listening, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        await listening(room)
        body = MessageCreateBody(id=uuid.uuid4(), content="once")
        service = MessageService(db, feed)

        await service.create_message(alice.id, room.id, body)
        await service.create_message(alice.id, room.id, body)

        assert chat_message_crud.count_by_room(db, room_id=room.id) == 1
        assert len(events) == 1

    async def test_attachments_make_a_file_message(self, db, feed, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        upload = UploadedFile(url="/uploads/chat/x/plan.pdf", name="plan.pdf", size=2048, type="application/pdf")

        msg = await MessageService(db, feed).create_message(
            alice.id, room.id, MessageCreateBody(attachments=[upload])
        )

        assert msg.content is None
        assert msg.message_type == "FILE"
        assert [(a.file_name, a.file_size, a.mime_type) for a in msg.attachments] == [
            ("plan.pdf", 2048, "application/pdf")
        ]
        stored = message_attachment_crud.list_by_message(db, message_id=msg.id)
        assert [a.file_path for a in stored] == ["/uploads/chat/x/plan.pdf"]

    async def test_read_only_member_cannot_post(self, db, feed, alice, carol, make_room):
        room = make_room("Ops", {alice: "ADMIN", carol: "READ"})
        with pytest.raises(Forbidden):
            await MessageService(db, feed).create_message(carol.id, room.id, MessageCreateBody(content="hi"))

    async def test_non_member_gets_not_found(self, db, feed, alice, bob, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        with pytest.raises(NotFound):
            await MessageService(db, feed).create_message(bob.id, room.id, MessageCreateBody(content="hi"))

    @pytest.mark.parametrize("content", [None, "", "   "])
    async def test_empty_message_is_rejected(self, db, feed, alice, make_room, content):
        room = make_room("Ops", {alice: "ADMIN"})
        with pytest.raises(ValidationError):
            await MessageService(db, feed).create_message(alice.id, room.id, MessageCreateBody(content=content))

    async def test_attachment_without_url_is_rejected(self, db, feed, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        bad = UploadedFile(url="", name="x.png", size=1, type="image/png")
        with pytest.raises(ValidationError):
            await MessageService(db, feed).create_message(alice.id, room.id, MessageCreateBody(attachments=[bad]))

    @pytest.mark.parametrize("offset", [timedelta(days=365), -timedelta(days=365)])
    async def test_created_at_is_stamped_by_the_server(self, db, feed, alice, make_room, offset):
        room = make_room("Ops", {alice: "ADMIN"})
        before = utcnow()
        body = MessageCreateBody(content="stamped", created_at=T0 + offset)

        msg = await MessageService(db, feed).create_message(alice.id, room.id, body)

        stamped = ensure_utc(msg.created_at)
        assert before <= stamped <= utcnow()

    async def test_failed_attachment_insert_saves_nothing(
        self, db, feed, events, listening, alice, make_room, monkeypatch
    ):
        room = make_room("Ops", {alice: "ADMIN"})
        await listening(room)
        upload = UploadedFile(url="/uploads/chat/x/plan.pdf", name="plan.pdf", size=2048, type="application/pdf")

        def conflict(*args, **kwargs):
            raise IntegrityError("INSERT INTO message_attachments", {}, Exception("duplicate key"))

        monkeypatch.setattr(message_attachment_crud, "add_from_dict", conflict)
        with pytest.raises(PersistenceError):
            await MessageService(db, feed).create_message(
                alice.id, room.id, MessageCreateBody(content="with file", attachments=[upload])
            )

        assert chat_message_crud.count_by_room(db, room_id=room.id) == 0
        assert events == []


class TestEditAndDelete:
    async def test_author_edit_publishes_update(self, db, feed, events, listening, alice, make_room):
        room = make_room("Ops", {alice: "ADMIN"})
        service = MessageService(db, feed)
        msg = await service.create_message(alice.id, room.id, MessageCreateBody(content="draft"))
        await listening(room)

        edited = await service.edit_message(alice.id, msg.id, "final")

        assert edited.content == "final"
        assert edited.is_edited is True
        assert [e.kind for e in events] == [ChangeKind.UPDATE]
        assert events[0].record["content"] == "final"

    async def test_only_author_may_edit(self, db, feed, alice, bob, make_room):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE"})
        msg = await MessageService(db, feed).create_message(bob.id, room.id, MessageCreateBody(content="mine"))
        with pytest.raises(Forbidden):
            await MessageService(db, feed).edit_message(alice.id, msg.id, "yours")

    async def test_soft_delete_keeps_row_and_publishes_delete(
        self, db, feed, events, listening, alice, make_room, session_user
    ):
        room = make_room("Ops", {alice: "ADMIN"})
        service = MessageService(db, feed)
        msg = await service.create_message(alice.id, room.id, MessageCreateBody(content="oops"))
        await listening(room)

        await service.soft_delete_message(session_user(alice), msg.id)

        db.expire_all()
        row = chat_message_crud.get_by_id(db, message_id=msg.id)
        assert row is not None
        assert row.is_deleted is True
        assert row.deleted_at is not None
        assert [e.kind for e in events] == [ChangeKind.DELETE]
        items, total = service.list_messages(alice.id, room.id, limit=50)
        assert items == [] and total == 0

    async def test_delete_is_idempotent(self, db, feed, events, listening, alice, make_room, session_user):
        room = make_room("Ops", {alice: "ADMIN"})
        service = MessageService(db, feed)
        msg = await service.create_message(alice.id, room.id, MessageCreateBody(content="twice"))
        await listening(room)
        await service.soft_delete_message(session_user(alice), msg.id)
        await service.soft_delete_message(session_user(alice), msg.id)
        assert len(events) == 1

    async def test_room_admin_may_delete_others_messages(self, db, feed, alice, bob, carol, make_room, session_user):
        room = make_room("Ops", {alice: "ADMIN", bob: "WRITE", carol: "WRITE"})
        service = MessageService(db, feed)
        msg = await service.create_message(bob.id, room.id, MessageCreateBody(content="spam"))

        with pytest.raises(Forbidden):
            await service.soft_delete_message(session_user(carol), msg.id)
        deleted = await service.soft_delete_message(session_user(alice), msg.id)
        assert deleted.is_deleted is True

    async def test_outsider_cannot_tell_a_deleted_message_exists(
        self, db, feed, alice, carol, make_room, add_message, session_user
    ):
        room = make_room("Ops", {alice: "ADMIN"})
        gone = add_message(room, alice, is_deleted=True)
        with pytest.raises(NotFound):
            await MessageService(db, feed).soft_delete_message(session_user(carol), gone.id)


class TestListMessages:
    def test_newest_first_with_offset_pages(self, db, alice, make_room, add_message):
        room = make_room("Ops", {alice: "ADMIN"})
        for minute in range(5):
            add_message(room, alice, content=f"m{minute}", minutes=minute)
        service = MessageService(db)

        first, total = service.list_messages(alice.id, room.id, limit=2)
        second, _ = service.list_messages(alice.id, room.id, limit=2, page=2)

        assert total == 5
        assert [m.content for m in first] == ["m4", "m3"]
        assert [m.content for m in second] == ["m2", "m1"]

    def test_before_id_cursor(self, db, alice, make_room, add_message):
        room = make_room("Ops", {alice: "ADMIN"})
        msgs = [add_message(room, alice, content=f"m{minute}", minutes=minute) for minute in range(5)]

        older, _ = MessageService(db).list_messages(alice.id, room.id, limit=10, before_id=msgs[2].id)

        assert [m.content for m in older] == ["m1", "m0"]

    def test_before_id_from_another_room_is_rejected(self, db, alice, make_room, add_message):
        room = make_room("Ops", {alice: "ADMIN"})
        other = make_room("Other", {alice: "ADMIN"})
        foreign = add_message(other, alice)
        with pytest.raises(ValidationError):
            MessageService(db).list_messages(alice.id, room.id, limit=10, before_id=foreign.id)
