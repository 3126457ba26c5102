"""
Message attachment CRUD.
"""
from typing import Any, Dict, List
import uuid
from sqlalchemy.orm import Session

from app.model.message_attachment import MessageAttachment
from app.crud.base import CRUDBase


class CRUDMessageAttachment(CRUDBase[MessageAttachment, Dict[str, Any], Dict[str, Any]]):
    def list_by_message(self, db: Session, *, message_id: uuid.UUID) -> List[MessageAttachment]:
        return (
            db.query(self.model)
            .filter(self.model.message_id == message_id)
            .order_by(self.model.created_at)
            .all()
        )


message_attachment_crud = CRUDMessageAttachment(MessageAttachment)
