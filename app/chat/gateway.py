"""
Persistence boundary for a room view: row CRUD, ordered range queries,
change-feed subscriptions, presence and uploads.

Each call opens its own database session, the way the WebSocket handler does.
"""
import logging
import uuid
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.chat.change_feed import ChangeFeed, CloseHook, EventHandler, Subscription, change_feed
from app.chat.presence import PresenceTracker, presence_tracker
from app.core.database import SessionLocal
from app.core.exceptions import NotFound
from app.crud import chat_participant_crud, user_crud
from app.schema.chat import (
    MessageCreateBody,
    MessageResponse,
    RoomResponse,
    SessionUser,
    UploadBatchResponse,
    UserSummary,
)
from app.service import upload_service
from app.service.message_service import MessageService
from app.service.read_service import ReadPositionService
from app.service.room_service import RoomService

logger = logging.getLogger(__name__)


class ChatGateway:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        feed: Optional[ChangeFeed] = None,
        presence: Optional[PresenceTracker] = None,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or change_feed
        self.presence = presence or presence_tracker

    # --- Rows ---

    async def get_room(self, user_id: uuid.UUID, room_id: uuid.UUID) -> RoomResponse:
        with self._session_factory() as db:
            room = RoomService(db).get_room(user_id, room_id)
            return RoomResponse.model_validate(room)

    async def get_permission(self, user_id: uuid.UUID, room_id: uuid.UUID) -> Optional[str]:
        with self._session_factory() as db:
            part = chat_participant_crud.get_by_room_and_user(db, room_id=room_id, user_id=user_id)
            return part.permission if part else None

    async def get_user(self, user_id: uuid.UUID) -> UserSummary:
        with self._session_factory() as db:
            user = user_crud.get_by_id(db, user_id=user_id)
            if not user:
                raise NotFound("User")
            return UserSummary.model_validate(user)

    async def fetch_messages(
        self,
        user_id: uuid.UUID,
        room_id: uuid.UUID,
        limit: int,
        before_id: Optional[uuid.UUID] = None,
    ) -> List[MessageResponse]:
        """Newest first."""
        with self._session_factory() as db:
            items, _ = MessageService(db, self.feed).list_messages(
                user_id, room_id, limit=limit, before_id=before_id
            )
            return [MessageResponse.model_validate(m) for m in items]

    async def insert_message(
        self, author: SessionUser, room_id: uuid.UUID, body: MessageCreateBody
    ) -> MessageResponse:
        with self._session_factory() as db:
            msg = await MessageService(db, self.feed).create_message(author.user_id, room_id, body)
            return MessageResponse.model_validate(msg)

    async def update_message(
        self, actor: SessionUser, message_id: uuid.UUID, content: str
    ) -> MessageResponse:
        with self._session_factory() as db:
            msg = await MessageService(db, self.feed).edit_message(actor.user_id, message_id, content)
            return MessageResponse.model_validate(msg)

    async def delete_message(self, actor: SessionUser, message_id: uuid.UUID) -> None:
        with self._session_factory() as db:
            await MessageService(db, self.feed).soft_delete_message(actor, message_id)

    async def mark_read(self, user_id: uuid.UUID, room_id: uuid.UUID) -> None:
        with self._session_factory() as db:
            ReadPositionService(db).mark_read(user_id, room_id)

    # --- Change feed ---

    async def subscribe(
        self,
        room_id: uuid.UUID,
        handler: EventHandler,
        on_close: Optional[CloseHook] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Subscription:
        return await self.feed.subscribe(room_id, handler, on_close, user_id=user_id)

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self.feed.unsubscribe(subscription)

    # --- Uploads ---

    async def upload(self, files: Sequence[upload_service.FileInput]) -> UploadBatchResponse:
        return upload_service.upload_many(files)
