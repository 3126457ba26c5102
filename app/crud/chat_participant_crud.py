"""
Chat participant CRUD.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func

from app.model.chat_participant import ChatParticipant
from app.crud.base import CRUDBase
from app.utils.clock import utcnow


class CRUDChatParticipant(CRUDBase[ChatParticipant, Dict[str, Any], Dict[str, Any]]):
    def get_by_room_and_user(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ChatParticipant]:
        """Active membership row, if any."""
        return (
            db.query(self.model)
            .filter(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
                self.model.is_active.is_(True),
            )
            .first()
        )

    def list_by_room(self, db: Session, *, room_id: uuid.UUID) -> List[ChatParticipant]:
        return (
            db.query(self.model)
            .options(joinedload(self.model.user))
            .filter(self.model.room_id == room_id, self.model.is_active.is_(True))
            .order_by(self.model.joined_at)
            .all()
        )

    def count_by_room(self, db: Session, *, room_id: uuid.UUID) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(self.model.room_id == room_id, self.model.is_active.is_(True))
            .scalar()
            or 0
        )

    def add_members(
        self,
        db: Session,
        *,
        room_id: uuid.UUID,
        members: Dict[uuid.UUID, str],
        actor_id: Optional[uuid.UUID],
    ) -> List[ChatParticipant]:
        """Insert one active row per user. Caller owns the commit."""
        rows = []
        for user_id, permission in members.items():
            rows.append(
                self.add_from_dict(
                    db,
                    obj_in={
                        "room_id": room_id,
                        "user_id": user_id,
                        "permission": permission,
                        "is_active": True,
                        "created_by": actor_id,
                        "updated_by": actor_id,
                    },
                )
            )
        return rows

    def deactivate_all(
        self, db: Session, *, room_id: uuid.UUID, actor_id: Optional[uuid.UUID]
    ) -> int:
        """Deactivate every active membership in the room. Caller owns the commit."""
        count = (
            db.query(self.model)
            .filter(self.model.room_id == room_id, self.model.is_active.is_(True))
            .update(
                {
                    self.model.is_active: False,
                    self.model.updated_by: actor_id,
                    self.model.updated_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
        db.flush()
        return count

    def mark_read(
        self, db: Session, *, participant: ChatParticipant, at: Optional[datetime] = None
    ) -> ChatParticipant:
        participant.last_read_at = at or utcnow()
        db.add(participant)
        db.commit()
        db.refresh(participant)
        return participant


chat_participant_crud = CRUDChatParticipant(ChatParticipant)
