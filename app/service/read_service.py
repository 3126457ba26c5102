"""
Read positions and unread counters.
"""
from datetime import datetime
from typing import List, Optional
import uuid
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFound
from app.crud import chat_message_crud, chat_participant_crud, chat_room_crud
from app.model.chat_participant import ChatParticipant
from app.schema.chat import ChatDashboard, DashboardRoom

logger = logging.getLogger(__name__)


class ReadPositionService:
    """Per-user-per-room last-read timestamps and the counts derived from them."""

    def __init__(self, db: Session):
        self.db = db

    def get_unread_count(self, user_id: uuid.UUID, room_id: uuid.UUID) -> int:
        """
        Non-deleted messages created strictly after the participant's last_read_at.

        A null last_read_at means nothing has been read yet. Users who are not
        active participants have nothing unread.
        """
        participant = chat_participant_crud.get_by_room_and_user(
            self.db, room_id=room_id, user_id=user_id
        )
        if not participant:
            return 0
        return chat_message_crud.count_since(
            self.db, room_id=room_id, since=participant.last_read_at
        )

    def mark_read(
        self, user_id: uuid.UUID, room_id: uuid.UUID, at: Optional[datetime] = None
    ) -> ChatParticipant:
        participant = chat_participant_crud.get_by_room_and_user(
            self.db, room_id=room_id, user_id=user_id
        )
        if not participant:
            raise NotFound("Room")
        participant = chat_participant_crud.mark_read(self.db, participant=participant, at=at)
        logger.debug("Room %s marked read by %s at %s", room_id, user_id, participant.last_read_at)
        return participant

    def get_dashboard(self, user_id: uuid.UUID, limit: Optional[int] = None) -> ChatDashboard:
        """
        Total unread across all rooms plus a short list of rooms to surface.

        Rooms with unread messages come first, most unread on top. When nothing
        is unread the most recently active rooms are shown instead.
        """
        limit = limit or settings.CHAT_DASHBOARD_ROOMS
        rooms, _ = chat_room_crud.list_rooms_for_user(self.db, user_id=user_id)
        entries: List[DashboardRoom] = []
        for room in rooms:
            last_msg = chat_message_crud.get_last_in_room(self.db, room_id=room.id)
            if last_msg:
                last_message = last_msg.content or "Message"
            else:
                last_message = "No messages yet"
            entries.append(
                DashboardRoom(
                    id=room.id,
                    name=room.name,
                    last_message=last_message,
                    unread_count=self.get_unread_count(user_id, room.id),
                )
            )
        total_unread = sum(e.unread_count for e in entries)
        with_unread = sorted(
            (e for e in entries if e.unread_count > 0),
            key=lambda e: e.unread_count,
            reverse=True,
        )
        # entries are already ordered by last activity
        recent = with_unread[:limit] if with_unread else entries[:limit]
        return ChatDashboard(total_unread=total_unread, recent_rooms=recent)
