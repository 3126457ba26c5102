"""
Chat room CRUD.
"""
from typing import Any, Dict, List, Optional, Tuple
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from app.model.chat_room import ChatRoom
from app.model.chat_participant import ChatParticipant
from app.model.enums import EntityType
from app.crud.base import CRUDBase

_ENTITY_COLUMNS = {
    EntityType.CLIENT: "client_id",
    EntityType.CONTRACT: "contract_id",
    EntityType.PROPOSAL: "proposal_id",
}


class CRUDChatRoom(CRUDBase[ChatRoom, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.id == room_id).first()

    def get_active(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        return (
            db.query(self.model)
            .filter(self.model.id == room_id, self.model.is_active.is_(True))
            .first()
        )

    def get_active_for_entity(
        self, db: Session, *, entity_type: EntityType, entity_id: uuid.UUID
    ) -> Optional[ChatRoom]:
        column = getattr(self.model, _ENTITY_COLUMNS[entity_type])
        return (
            db.query(self.model)
            .filter(column == entity_id, self.model.is_active.is_(True))
            .first()
        )

    def list_rooms_for_user(
        self,
        db: Session,
        *,
        user_id: uuid.UUID,
        room_type: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[ChatRoom], int]:
        """Active rooms the user actively participates in, most recent activity first."""
        subq = (
            db.query(ChatParticipant.room_id)
            .filter(
                ChatParticipant.user_id == user_id,
                ChatParticipant.is_active.is_(True),
            )
        )
        base = db.query(self.model).filter(
            self.model.id.in_(subq),
            self.model.is_active.is_(True),
        )
        if room_type:
            base = base.filter(self.model.room_type == room_type)
        total = base.with_entities(func.count(self.model.id)).scalar() or 0
        query = base.order_by(
            desc(self.model.last_message_at).nullslast(),
            desc(self.model.created_at),
        )
        if limit:
            query = query.offset((page - 1) * limit).limit(limit)
        return query.all(), total


def entity_column(entity_type: EntityType) -> str:
    return _ENTITY_COLUMNS[entity_type]


chat_room_crud = CRUDChatRoom(ChatRoom)
