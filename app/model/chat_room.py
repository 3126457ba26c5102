"""
Chat room model. One discussion channel, optionally tied to a client, contract or proposal.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base
from app.model.enums import RoomType
from app.utils.clock import utcnow


class ChatRoom(Base):
    __tablename__ = "chat_rooms"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN client_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN contract_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN proposal_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name="ck_chat_rooms_single_entity",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    room_type = Column(String, nullable=False, default=RoomType.GENERAL.value, index=True)
    avatar_url = Column(String, nullable=True)
    # Owning business entity; rows live in the portal's CRUD schema.
    client_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    contract_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    proposal_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    participants = relationship("ChatParticipant", back_populates="room")
    messages = relationship("ChatMessage", back_populates="room", foreign_keys="ChatMessage.room_id")
