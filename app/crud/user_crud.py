"""
User CRUD operations.
"""
from typing import List, Optional
import uuid
from sqlalchemy.orm import Session
from app.model.user import User
from app.model.enums import UserRole
from app.crud.base import CRUDBase


class CRUDUser(CRUDBase[User, dict, dict]):
    """User-specific CRUD operations."""

    def get_by_id(self, db: Session, *, user_id: uuid.UUID) -> Optional[User]:
        return self.get_by_field(db, "id", user_id)

    def list_platform_admins(self, db: Session) -> List[User]:
        return (
            db.query(self.model)
            .filter(
                self.model.role == UserRole.PLATFORM_ADMIN.value,
                self.model.is_active.is_(True),
            )
            .all()
        )


user_crud = CRUDUser(User)
