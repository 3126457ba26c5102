"""
Chat message CRUD.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import and_, desc, func, or_

from app.model.chat_message import ChatMessage
from app.crud.base import CRUDBase


class CRUDChatMessage(CRUDBase[ChatMessage, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, message_id: uuid.UUID) -> Optional[ChatMessage]:
        return (
            db.query(self.model)
            .options(joinedload(self.model.user), selectinload(self.model.attachments))
            .filter(self.model.id == message_id)
            .first()
        )

    def list_by_room_range(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        offset: int = 0,
        limit: int = 50,
        before: Optional[ChatMessage] = None,
    ) -> List[ChatMessage]:
        """Ordered range query, newest first, skipping soft-deleted rows.

        With ``before``, only messages strictly older than it (by created_at, then id).
        """
        query = (
            db.query(self.model)
            .options(joinedload(self.model.user), selectinload(self.model.attachments))
            .filter(self.model.room_id == room_id, self.model.is_deleted.is_(False))
        )
        if before is not None:
            query = query.filter(
                or_(
                    self.model.created_at < before.created_at,
                    and_(self.model.created_at == before.created_at, self.model.id < before.id),
                )
            )
        return (
            query.order_by(desc(self.model.created_at), desc(self.model.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_by_room(self, db: Session, *, room_id: uuid.UUID) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(self.model.room_id == room_id, self.model.is_deleted.is_(False))
            .scalar()
            or 0
        )

    def get_last_in_room(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatMessage]:
        return (
            db.query(self.model)
            .filter(self.model.room_id == room_id, self.model.is_deleted.is_(False))
            .order_by(desc(self.model.created_at))
            .first()
        )

    def count_since(
        self, db: Session, *, room_id: uuid.UUID, since: Optional[datetime]
    ) -> int:
        """Non-deleted messages strictly after ``since``; all of them when None."""
        query = db.query(func.count(self.model.id)).filter(
            self.model.room_id == room_id,
            self.model.is_deleted.is_(False),
        )
        if since is not None:
            query = query.filter(self.model.created_at > since)
        return query.scalar() or 0


chat_message_crud = CRUDChatMessage(ChatMessage)
