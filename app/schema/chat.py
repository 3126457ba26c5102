"""
Chat schemas: rooms, members, messages, attachments and dashboard.
"""
from datetime import datetime
from typing import List, Literal, Optional
import uuid
from pydantic import BaseModel, Field, field_validator, model_validator

from app.model.enums import MessageType, PermissionType, RoomType
from app.utils.clock import ensure_utc


class _UTCModel(BaseModel):
    """Normalizes every datetime field to aware UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _utc(cls, value):
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


# --- Identity ---


class SessionUser(BaseModel):
    """Current authenticated user, as stored in the Redis session."""
    user_id: uuid.UUID
    email: str
    name: str = ""
    avatar_url: Optional[str] = None
    role: str = "AGENCY_MEMBER"


class UserSummary(BaseModel):
    """Author / member display identity."""
    id: uuid.UUID
    name: str = ""
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


# --- Attachments ---

MediaKind = Literal["image", "video", "document", "other"]

_DOCUMENT_PREFIXES = ("application/", "text/")


def media_kind(mime_type: str) -> MediaKind:
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    if mime.startswith(_DOCUMENT_PREFIXES):
        return "document"
    return "other"


class AttachmentMedia(BaseModel):
    """Tagged attachment variant; kind must agree with mime_type."""
    kind: MediaKind
    url: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    mime_type: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _kind_matches_mime(self) -> "AttachmentMedia":
        if self.kind != media_kind(self.mime_type):
            raise ValueError(f"kind {self.kind!r} does not match mime type {self.mime_type!r}")
        return self


class UploadedFile(BaseModel):
    """Result of a successful upload: { url, name, size, type }."""
    url: str
    name: str
    size: int = Field(..., ge=0)
    type: str

    def to_media(self) -> AttachmentMedia:
        return AttachmentMedia(kind=media_kind(self.type), url=self.url, size=self.size, mime_type=self.type)


class UploadFailure(BaseModel):
    name: str
    code: str
    message: str


class UploadBatchResponse(BaseModel):
    uploaded: List[UploadedFile] = []
    failed: List[UploadFailure] = []


class AttachmentResponse(_UTCModel):
    id: uuid.UUID
    message_id: uuid.UUID
    file_name: str
    file_path: str
    file_size: int
    mime_type: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def media(self) -> AttachmentMedia:
        return AttachmentMedia(
            kind=media_kind(self.mime_type),
            url=self.file_path,
            size=self.file_size,
            mime_type=self.mime_type,
        )


# --- Message ---


class MessageCreateBody(BaseModel):
    """Body for POST /chat/rooms/{room_id}/messages. The id comes from the sender, the timestamp from the server."""
    id: Optional[uuid.UUID] = None
    content: Optional[str] = Field(None, max_length=4000)
    attachments: List[UploadedFile] = []


class MessageUpdateBody(BaseModel):
    content: str = Field(..., max_length=4000)


class MessageResponse(_UTCModel):
    """Display-ready message with author and attachments."""
    id: uuid.UUID
    room_id: uuid.UUID
    user_id: uuid.UUID
    content: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    is_edited: bool = False
    is_deleted: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None
    user: Optional[UserSummary] = None
    attachments: List[AttachmentResponse] = []

    class Config:
        from_attributes = True


class MessageListResponse(BaseModel):
    """Page of messages, ascending by created_at."""
    items: List[MessageResponse]
    page: int = Field(..., description="Current page (1-based).")
    limit: int = Field(..., description="Items per page.")
    total: int = Field(..., description="Total non-deleted messages in room.")
    total_pages: int = Field(..., description="Total pages.")
    has_more: bool = False


# --- Room ---


class MemberSpec(BaseModel):
    user_id: uuid.UUID
    permission: PermissionType = PermissionType.READ


class RoomCreateBody(BaseModel):
    """Body for POST /chat/rooms."""
    name: str = ""
    description: Optional[str] = None
    room_type: RoomType = RoomType.GENERAL
    avatar_url: Optional[str] = None
    client_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    proposal_id: Optional[uuid.UUID] = None
    members: List[MemberSpec] = []


class RoomUpdateBody(BaseModel):
    """Body for PATCH /chat/rooms/{room_id}. members=None leaves membership alone."""
    name: Optional[str] = None
    description: Optional[str] = None
    room_type: Optional[RoomType] = None
    avatar_url: Optional[str] = None
    members: Optional[List[MemberSpec]] = None


class ArchiveBody(BaseModel):
    archived: bool = True


class RoomResponse(_UTCModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    room_type: RoomType
    avatar_url: Optional[str] = None
    client_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    proposal_id: Optional[uuid.UUID] = None
    last_message_at: Optional[datetime] = None
    is_active: bool = True
    is_archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LastMessagePreview(_UTCModel):
    """Last message snippet for room list."""
    id: uuid.UUID
    content: str
    user: Optional[UserSummary] = None
    created_at: datetime


class RoomSummary(_UTCModel):
    """Room in the directory with unread count and last message preview."""
    id: uuid.UUID
    name: str
    room_type: RoomType
    avatar_url: Optional[str] = None
    last_message_at: Optional[datetime] = None
    is_archived: bool = False
    unread_count: int = 0
    participant_count: int = 0
    last_message_preview: Optional[LastMessagePreview] = None


class RoomListResponse(BaseModel):
    items: List[RoomSummary]
    total: int


class MemberResponse(_UTCModel):
    id: uuid.UUID
    room_id: uuid.UUID
    user_id: uuid.UUID
    permission: PermissionType
    last_read_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


# --- Read position / dashboard ---


class UnreadResponse(BaseModel):
    room_id: uuid.UUID
    unread_count: int


class ReadPositionResponse(_UTCModel):
    room_id: uuid.UUID
    last_read_at: datetime


class DashboardRoom(BaseModel):
    id: uuid.UUID
    name: str
    last_message: str
    unread_count: int


class ChatDashboard(BaseModel):
    total_unread: int
    recent_rooms: List[DashboardRoom]
