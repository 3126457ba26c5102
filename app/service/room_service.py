"""
Room directory: rooms a user participates in, room lifecycle and membership.
"""
from typing import Dict, List, Optional, Sequence
import uuid
import logging

from sqlalchemy.orm import Session

from app.chat.change_feed import ChangeFeed, change_feed
from app.core.config import settings
from app.core.database import write_transaction
from app.core.exceptions import Forbidden, NotFound, ValidationError
from app.crud import (
    chat_message_crud,
    chat_participant_crud,
    chat_room_crud,
    user_crud,
)
from app.crud.chat_room_crud import entity_column
from app.model.chat_participant import ChatParticipant
from app.model.chat_room import ChatRoom
from app.model.enums import EntityType, PermissionType, RoomType, UserRole
from app.schema.chat import (
    LastMessagePreview,
    MemberSpec,
    RoomCreateBody,
    RoomSummary,
    RoomUpdateBody,
    SessionUser,
    UserSummary,
)
from app.service.read_service import ReadPositionService
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

ENTITY_ROOM_TYPES = {
    EntityType.CLIENT: RoomType.CLIENT_SPECIFIC,
    EntityType.CONTRACT: RoomType.CONTRACT_SPECIFIC,
    EntityType.PROPOSAL: RoomType.PROPOSAL_SPECIFIC,
}


def _preview_text(content: Optional[str]) -> str:
    if not content:
        return "Message"
    limit = settings.CHAT_PREVIEW_LENGTH
    return content[:limit] + ("..." if len(content) > limit else "")


class RoomService:
    """
    Room directory operations. ADMIN-only actions check the actor's permission.

    Removing members or deleting a room revokes the affected change-feed
    subscriptions once the change is committed.
    """

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed or change_feed
        self.reads = ReadPositionService(db)

    # --- Queries ---

    def list_rooms_for_user(
        self, user_id: uuid.UUID, room_type: Optional[str] = None
    ) -> List[RoomSummary]:
        rooms, _ = chat_room_crud.list_rooms_for_user(
            self.db, user_id=user_id, room_type=room_type
        )
        return [self._summarize(room, user_id) for room in rooms]

    def get_room(self, user_id: uuid.UUID, room_id: uuid.UUID) -> ChatRoom:
        """Active room, visible only to its active participants."""
        room = chat_room_crud.get_active(self.db, room_id=room_id)
        part = chat_participant_crud.get_by_room_and_user(
            self.db, room_id=room_id, user_id=user_id
        )
        if not room or not part:
            raise NotFound("Room")
        return room

    def list_members(self, user_id: uuid.UUID, room_id: uuid.UUID) -> List[ChatParticipant]:
        self.get_room(user_id, room_id)
        return chat_participant_crud.list_by_room(self.db, room_id=room_id)

    # --- Lifecycle ---

    def create_room(
        self,
        creator_id: uuid.UUID,
        attrs: RoomCreateBody,
        members: Optional[Sequence[MemberSpec]] = None,
    ) -> ChatRoom:
        """Insert a room, its creator as ADMIN and every listed member (default READ)."""
        name = (attrs.name or "").strip()
        if not name:
            raise ValidationError(message="Room name is required.")
        linked = [v for v in (attrs.client_id, attrs.contract_id, attrs.proposal_id) if v]
        if len(linked) > 1:
            raise ValidationError(message="A room can belong to at most one client, contract or proposal.")
        member_map = self._member_map(creator_id, attrs.members if members is None else members)

        with write_transaction(self.db, "create room"):
            room = chat_room_crud.add_from_dict(
                self.db,
                obj_in={
                    "id": uuid.uuid4(),
                    "name": name,
                    "description": attrs.description,
                    "room_type": attrs.room_type.value,
                    "avatar_url": attrs.avatar_url,
                    "client_id": attrs.client_id,
                    "contract_id": attrs.contract_id,
                    "proposal_id": attrs.proposal_id,
                    "is_active": True,
                    "is_archived": False,
                    "created_by": creator_id,
                    "updated_by": creator_id,
                },
            )
            chat_participant_crud.add_members(
                self.db, room_id=room.id, members=member_map, actor_id=creator_id
            )
        self.db.refresh(room)
        logger.info("Room %s (%s) created by %s with %d members", room.id, room.name, creator_id, len(member_map))
        return room

    async def update_room(
        self,
        actor: SessionUser,
        room_id: uuid.UUID,
        patch: RoomUpdateBody,
        members: Optional[Sequence[MemberSpec]] = None,
    ) -> ChatRoom:
        """
        Update scalar fields; when a member list is given, replace membership wholesale.

        Replacement deactivates every active row and inserts the new set (with the
        actor as ADMIN). Unaffected members lose their previous join timestamps.
        Users left out of the new set lose their live subscriptions.
        """
        room = self._require_admin(actor, room_id)
        if members is None:
            members = patch.members
        fields = patch.model_dump(exclude_unset=True, exclude={"members"})
        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()
            if not fields["name"]:
                raise ValidationError(message="Room name is required.")
        if fields.get("room_type") is not None:
            fields["room_type"] = RoomType(fields["room_type"]).value
        fields["updated_by"] = actor.user_id
        member_map = None if members is None else self._member_map(actor.user_id, members)

        removed: List[uuid.UUID] = []
        with write_transaction(self.db, "update room"):
            chat_room_crud.update_from_dict(self.db, db_obj=room, obj_in=fields, commit=False)
            if member_map is not None:
                current = chat_participant_crud.list_by_room(self.db, room_id=room.id)
                removed = [p.user_id for p in current if p.user_id not in member_map]
                chat_participant_crud.deactivate_all(self.db, room_id=room.id, actor_id=actor.user_id)
                chat_participant_crud.add_members(
                    self.db, room_id=room.id, members=member_map, actor_id=actor.user_id
                )
        self.db.refresh(room)
        logger.info("Room %s updated by %s", room.id, actor.user_id)
        if removed:
            await self.feed.revoke(room.id, removed)
        return room

    async def soft_delete_room(self, actor: SessionUser, room_id: uuid.UUID) -> None:
        """Hide the room and close its live subscriptions. Messages stay for audit."""
        room = self._require_admin(actor, room_id)
        with write_transaction(self.db, "delete room"):
            chat_room_crud.update_from_dict(
                self.db,
                db_obj=room,
                obj_in={"is_active": False, "deleted_at": utcnow(), "updated_by": actor.user_id},
                commit=False,
            )
        logger.info("Room %s soft-deleted by %s", room_id, actor.user_id)
        await self.feed.revoke(room_id)

    def archive_room(self, actor: SessionUser, room_id: uuid.UUID, archived: bool = True) -> ChatRoom:
        room = self._require_admin(actor, room_id)
        with write_transaction(self.db, "archive room"):
            chat_room_crud.update_from_dict(
                self.db,
                db_obj=room,
                obj_in={"is_archived": archived, "updated_by": actor.user_id},
                commit=False,
            )
        self.db.refresh(room)
        return room

    def ensure_entity_room(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        name: str,
        creator_id: uuid.UUID,
        description: Optional[str] = None,
        suppress: bool = False,
    ) -> Optional[ChatRoom]:
        """
        Discussion room for a client, contract or proposal.

        Called when the entity is created. Returns the existing active room when
        there is one, so every entity ends up with exactly one. The room is seeded
        with the creator and all platform admins as ADMIN.
        """
        if suppress:
            return None
        existing = chat_room_crud.get_active_for_entity(
            self.db, entity_type=entity_type, entity_id=entity_id
        )
        if existing:
            return existing
        members = [
            MemberSpec(user_id=admin.id, permission=PermissionType.ADMIN)
            for admin in user_crud.list_platform_admins(self.db)
        ]
        attrs = RoomCreateBody(
            name=name,
            description=description,
            room_type=ENTITY_ROOM_TYPES[entity_type],
            **{entity_column(entity_type): entity_id},
        )
        return self.create_room(creator_id, attrs, members)

    # --- Helpers ---

    def _require_admin(self, actor: SessionUser, room_id: uuid.UUID) -> ChatRoom:
        room = chat_room_crud.get_active(self.db, room_id=room_id)
        if not room:
            raise NotFound("Room")
        if actor.role == UserRole.PLATFORM_ADMIN.value:
            return room
        part = chat_participant_crud.get_by_room_and_user(
            self.db, room_id=room_id, user_id=actor.user_id
        )
        if not part:
            raise NotFound("Room")
        if part.permission != PermissionType.ADMIN.value:
            raise Forbidden(message="Only room admins can manage this room.")
        return room

    def _member_map(
        self, creator_id: uuid.UUID, members: Sequence[MemberSpec]
    ) -> Dict[uuid.UUID, str]:
        """One permission per user; the creator is always ADMIN."""
        result: Dict[uuid.UUID, str] = {creator_id: PermissionType.ADMIN.value}
        for member in members or []:
            if member.user_id == creator_id:
                continue
            if not user_crud.get_by_id(self.db, user_id=member.user_id):
                raise ValidationError(message=f"Unknown member {member.user_id}.")
            result[member.user_id] = PermissionType(member.permission).value
        return result

    def _summarize(self, room: ChatRoom, user_id: uuid.UUID) -> RoomSummary:
        last_msg = chat_message_crud.get_last_in_room(self.db, room_id=room.id)
        preview = None
        if last_msg:
            preview = LastMessagePreview(
                id=last_msg.id,
                content=_preview_text(last_msg.content),
                user=UserSummary.model_validate(last_msg.user) if last_msg.user else None,
                created_at=last_msg.created_at,
            )
        return RoomSummary(
            id=room.id,
            name=room.name,
            room_type=room.room_type,
            avatar_url=room.avatar_url,
            last_message_at=room.last_message_at,
            is_archived=room.is_archived,
            unread_count=self.reads.get_unread_count(user_id, room.id),
            participant_count=chat_participant_crud.count_by_room(self.db, room_id=room.id),
            last_message_preview=preview,
        )
