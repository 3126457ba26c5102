"""Shared test fixtures and configuration for backend tests."""
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

_TMP_DIR = tempfile.mkdtemp(prefix="agency-chat-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'chat.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["S3_BUCKET_NAME"] = ""
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient

from app.chat.change_feed import ChangeFeed
from app.chat.gateway import ChatGateway
from app.chat.presence import PresenceTracker
from app.core.database import Base, SessionLocal, engine
from app.core.dependencies import validate_session
from app.crud import chat_message_crud, chat_participant_crud, chat_room_crud, user_crud
from app.model.enums import PermissionType, UserRole
from app.schema.chat import SessionUser
from app.session import session_payload
from main import app

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    """Every test starts from empty tables."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(name: str, role: str = UserRole.AGENCY_MEMBER.value):
        return user_crud.create_from_dict(
            db,
            obj_in={
                "email": f"{name.lower()}-{uuid.uuid4().hex[:6]}@agency.test",
                "name": name,
                "role": role,
            },
        )

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def carol(make_user):
    return make_user("Carol")


@pytest.fixture
def platform_admin(make_user):
    return make_user("Pat", role=UserRole.PLATFORM_ADMIN.value)


@pytest.fixture
def session_user():
    """SessionUser for a User row, as the session layer would build it."""
    def _build(user) -> SessionUser:
        return SessionUser.model_validate(session_payload(user))

    return _build


@pytest.fixture
def make_room(db):
    """Room with explicit permissions: make_room("Ops", {alice: "ADMIN", bob: "WRITE"})."""
    def _make(name: str, members):
        creator = next(iter(members))
        room = chat_room_crud.add_from_dict(
            db,
            obj_in={"name": name, "room_type": "GENERAL", "created_by": creator.id},
        )
        chat_participant_crud.add_members(
            db,
            room_id=room.id,
            members={u.id: PermissionType(p).value for u, p in members.items()},
            actor_id=creator.id,
        )
        db.commit()
        db.refresh(room)
        return room

    return _make


@pytest.fixture
def add_message(db):
    """Insert a message row directly; `minutes` offsets created_at from T0."""
    def _add(room, user, content="hello", minutes=0, is_deleted=False):
        created_at = T0 + timedelta(minutes=minutes)
        msg = chat_message_crud.create_from_dict(
            db,
            obj_in={
                "room_id": room.id,
                "user_id": user.id,
                "content": content,
                "is_deleted": is_deleted,
                "created_at": created_at,
                "updated_at": created_at,
            },
        )
        room.last_message_at = created_at
        db.add(room)
        db.commit()
        return msg

    return _add


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def presence():
    return PresenceTracker()


@pytest.fixture
def gateway(feed, presence):
    return ChatGateway(session_factory=SessionLocal, feed=feed, presence=presence)


@pytest.fixture
def api_client():
    """TestClient for the main app; call `login(user)` to pick the session user."""
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    def _login(user):
        payload = session_payload(user)
        app.dependency_overrides[validate_session] = lambda: payload

    return _login
