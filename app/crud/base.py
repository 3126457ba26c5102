"""
Generic CRUD base shared by all model-specific CRUD classes.
"""
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from app.core.database import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType")
UpdateSchemaType = TypeVar("UpdateSchemaType")


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def get_by_field(self, db: Session, field: str, value: Any) -> Optional[ModelType]:
        return db.query(self.model).filter(getattr(self.model, field) == value).first()

    def build(self, obj_in: Dict[str, Any]) -> ModelType:
        """Instantiate without touching the session."""
        return self.model(**obj_in)

    def add_from_dict(self, db: Session, *, obj_in: Dict[str, Any]) -> ModelType:
        """Add to the session and flush; the caller owns the commit."""
        db_obj = self.build(obj_in)
        db.add(db_obj)
        db.flush()
        return db_obj

    def create_from_dict(self, db: Session, *, obj_in: Dict[str, Any]) -> ModelType:
        db_obj = self.build(obj_in)
        db.add(db_obj)
        db.commit()
        db.refresh(db_obj)
        return db_obj

    def update_from_dict(
        self, db: Session, *, db_obj: ModelType, obj_in: Dict[str, Any], commit: bool = True
    ) -> ModelType:
        for field, value in obj_in.items():
            setattr(db_obj, field, value)
        db.add(db_obj)
        if commit:
            db.commit()
            db.refresh(db_obj)
        else:
            db.flush()
        return db_obj
