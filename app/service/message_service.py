"""
Message persistence: insert (with attachments), edit, soft delete, range queries.

Every committed write is published on the change feed so open room views
receive it.
"""
from typing import Any, Dict, List, Optional, Tuple
import uuid
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.chat.change_feed import ChangeFeed, ChangeKind, change_feed
from app.core.config import settings
from app.core.database import write_transaction
from app.core.exceptions import Forbidden, NotFound, ValidationError
from app.crud import (
    chat_message_crud,
    chat_participant_crud,
    chat_room_crud,
    message_attachment_crud,
)
from app.model.chat_message import ChatMessage
from app.model.chat_participant import ChatParticipant
from app.model.enums import WRITE_PERMISSIONS, MessageType, PermissionType, UserRole
from app.schema.chat import MessageCreateBody, MessageResponse, SessionUser
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def message_record(msg: ChatMessage) -> Dict[str, Any]:
    """Row-level payload for the change feed (no author join)."""
    return MessageResponse.model_validate(msg).model_dump(mode="json", exclude={"user"})


class MessageService:
    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed or change_feed

    # --- Queries ---

    def list_messages(
        self,
        user_id: uuid.UUID,
        room_id: uuid.UUID,
        *,
        limit: int,
        page: int = 1,
        before_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[ChatMessage], int]:
        """Newest first. before_id switches from page offsets to a cursor."""
        self._require_participant(user_id, room_id)
        before = None
        if before_id:
            before = chat_message_crud.get_by_id(self.db, message_id=before_id)
            if not before or before.room_id != room_id:
                raise ValidationError(message="before_id must reference a message in this room.")
        items = chat_message_crud.list_by_room_range(
            self.db,
            room_id=room_id,
            offset=0 if before else (page - 1) * limit,
            limit=limit,
            before=before,
        )
        total = chat_message_crud.count_by_room(self.db, room_id=room_id)
        return items, total

    def get_message(self, user_id: uuid.UUID, message_id: uuid.UUID) -> ChatMessage:
        msg = chat_message_crud.get_by_id(self.db, message_id=message_id)
        if not msg or msg.is_deleted:
            raise NotFound("Message")
        self._require_participant(user_id, msg.room_id)
        return msg

    # --- Writes ---

    async def create_message(
        self, author_id: uuid.UUID, room_id: uuid.UUID, body: MessageCreateBody
    ) -> ChatMessage:
        """
        Insert a message and its attachment rows, bump the room's last_message_at.

        The id normally comes from the sender so the optimistic copy and the
        stored row match; created_at is always stamped here. Re-sending an id
        that already exists returns the stored row without publishing again.
        """
        part = self._require_participant(author_id, room_id)
        if part.permission not in WRITE_PERMISSIONS:
            raise Forbidden(message="You have read-only access to this room.")
        room = chat_room_crud.get_active(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")

        content = (body.content or "").strip() or None
        if not content and not body.attachments:
            raise ValidationError(message="Message can not be empty.")
        if content and len(content) > settings.CHAT_MAX_MESSAGE_LENGTH:
            raise ValidationError(
                message=f"Message is longer than {settings.CHAT_MAX_MESSAGE_LENGTH} characters."
            )
        try:
            media = [f.to_media() for f in body.attachments]
        except PydanticValidationError as e:
            raise ValidationError(message=f"Invalid attachment: {e.errors()[0]['msg']}")

        message_id = body.id or uuid.uuid4()
        existing = chat_message_crud.get_by_id(self.db, message_id=message_id)
        if existing:
            if existing.room_id != room_id or existing.user_id != author_id:
                raise ValidationError(message="Message id already in use.")
            return existing

        now = utcnow()
        with write_transaction(self.db, "save message"):
            msg = chat_message_crud.add_from_dict(
                self.db,
                obj_in={
                    "id": message_id,
                    "room_id": room_id,
                    "user_id": author_id,
                    "content": content,
                    "message_type": (MessageType.FILE if media else MessageType.TEXT).value,
                    "is_edited": False,
                    "is_deleted": False,
                    "created_at": now,
                    "updated_at": now,
                    "created_by": author_id,
                    "updated_by": author_id,
                },
            )
            for upload, item in zip(body.attachments, media):
                message_attachment_crud.add_from_dict(
                    self.db,
                    obj_in={
                        "message_id": msg.id,
                        "file_name": upload.name,
                        "file_path": item.url,
                        "file_size": item.size,
                        "mime_type": item.mime_type,
                    },
                )
            room.last_message_at = now
            self.db.add(room)
        self.db.expire_all()
        msg = chat_message_crud.get_by_id(self.db, message_id=message_id)
        logger.info("Message %s saved in room %s (%d attachments)", msg.id, room_id, len(media))
        await self.feed.publish(room_id, ChangeKind.INSERT, message_record(msg))
        return msg

    async def edit_message(
        self, actor_id: uuid.UUID, message_id: uuid.UUID, content: str
    ) -> ChatMessage:
        msg = self.get_message(actor_id, message_id)
        if msg.user_id != actor_id:
            raise Forbidden(message="Only the author can edit this message.")
        content = (content or "").strip()
        if not content:
            raise ValidationError(message="Message can not be empty.")
        if len(content) > settings.CHAT_MAX_MESSAGE_LENGTH:
            raise ValidationError(
                message=f"Message is longer than {settings.CHAT_MAX_MESSAGE_LENGTH} characters."
            )
        with write_transaction(self.db, "edit message"):
            chat_message_crud.update_from_dict(
                self.db,
                db_obj=msg,
                obj_in={"content": content, "is_edited": True, "updated_at": utcnow(), "updated_by": actor_id},
                commit=False,
            )
        self.db.refresh(msg)
        logger.info("Message %s edited by %s", msg.id, actor_id)
        await self.feed.publish(msg.room_id, ChangeKind.UPDATE, message_record(msg))
        return msg

    async def soft_delete_message(self, actor: SessionUser, message_id: uuid.UUID) -> ChatMessage:
        """Mark deleted; the row stays. Authors and room admins may delete."""
        msg = chat_message_crud.get_by_id(self.db, message_id=message_id)
        if not msg:
            raise NotFound("Message")
        part = self._require_participant(actor.user_id, msg.room_id)
        if msg.is_deleted:
            return msg
        is_admin = (
            part.permission == PermissionType.ADMIN.value
            or actor.role == UserRole.PLATFORM_ADMIN.value
        )
        if msg.user_id != actor.user_id and not is_admin:
            raise Forbidden(message="Only the author or a room admin can delete this message.")
        now = utcnow()
        with write_transaction(self.db, "delete message"):
            chat_message_crud.update_from_dict(
                self.db,
                db_obj=msg,
                obj_in={"is_deleted": True, "deleted_at": now, "updated_at": now, "updated_by": actor.user_id},
                commit=False,
            )
        self.db.refresh(msg)
        logger.info("Message %s soft-deleted by %s", msg.id, actor.user_id)
        await self.feed.publish(msg.room_id, ChangeKind.DELETE, message_record(msg))
        return msg

    # --- Helpers ---

    def _require_participant(self, user_id: uuid.UUID, room_id: uuid.UUID) -> ChatParticipant:
        part = chat_participant_crud.get_by_room_and_user(self.db, room_id=room_id, user_id=user_id)
        if not part:
            raise NotFound("Room")
        return part
