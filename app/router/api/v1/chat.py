"""
Chat API: rooms, members, messages, read positions, uploads (REST). WebSocket in same module.
"""
import json
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from app.chat.connection_manager import Connection, connection_manager
from app.core.config import settings
from app.core.database import SessionLocal, get_db
from app.core.dependencies import get_current_user
from app.crud import chat_participant_crud
from app.schema.chat import (
    ArchiveBody,
    ChatDashboard,
    MemberResponse,
    MessageCreateBody,
    MessageListResponse,
    MessageResponse,
    MessageUpdateBody,
    ReadPositionResponse,
    RoomCreateBody,
    RoomListResponse,
    RoomResponse,
    RoomUpdateBody,
    SessionUser,
    UnreadResponse,
    UploadBatchResponse,
)
from app.service import upload_service
from app.service.message_service import MessageService
from app.service.read_service import ReadPositionService
from app.service.room_service import RoomService
from app.session import get_session

router = APIRouter()
logger = logging.getLogger(__name__)


def _clamp(value: int, default: int, maximum: int = 100) -> int:
    if value < 1 or value > maximum:
        return default
    return value


# --- REST: Rooms ---

@router.get("/rooms", response_model=RoomListResponse)
async def list_rooms(
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    page: int = 1,
    limit: int = settings.CHAT_ROOM_PAGE_SIZE,
    room_type: Optional[str] = None,
):
    """Rooms the current user participates in, most recently active first."""
    page = max(page, 1)
    limit = _clamp(limit, settings.CHAT_ROOM_PAGE_SIZE)
    rooms = RoomService(db).list_rooms_for_user(current_user.user_id, room_type=room_type)
    start = (page - 1) * limit
    return RoomListResponse(items=rooms[start:start + limit], total=len(rooms))


@router.post("/rooms", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    body: RoomCreateBody,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a room. The creator becomes its ADMIN."""
    room = RoomService(db).create_room(current_user.user_id, body)
    return RoomResponse.model_validate(room)


@router.get("/rooms/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    room = RoomService(db).get_room(current_user.user_id, room_id)
    return RoomResponse.model_validate(room)


@router.patch("/rooms/{room_id}", response_model=RoomResponse)
async def update_room(
    room_id: uuid.UUID,
    body: RoomUpdateBody,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update room details. A `members` list replaces the whole membership."""
    room = await RoomService(db).update_room(current_user, room_id, body)
    return RoomResponse.model_validate(room)


@router.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    await RoomService(db).soft_delete_room(current_user, room_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/rooms/{room_id}/archive", response_model=RoomResponse)
async def archive_room(
    room_id: uuid.UUID,
    body: ArchiveBody,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    room = RoomService(db).archive_room(current_user, room_id, body.archived)
    return RoomResponse.model_validate(room)


@router.get("/rooms/{room_id}/members", response_model=List[MemberResponse])
async def list_members(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    members = RoomService(db).list_members(current_user.user_id, room_id)
    return [MemberResponse.model_validate(m) for m in members]


# --- REST: Messages ---

@router.get("/rooms/{room_id}/messages", response_model=MessageListResponse)
async def list_messages(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    page: int = 1,
    limit: int = settings.CHAT_PAGE_SIZE,
    before_id: Optional[uuid.UUID] = None,
):
    """Page of messages (ascending). Marks room as read for current user."""
    page = max(page, 1)
    limit = _clamp(limit, settings.CHAT_PAGE_SIZE)
    items, total = MessageService(db).list_messages(
        current_user.user_id, room_id, limit=limit, page=page, before_id=before_id
    )
    ReadPositionService(db).mark_read(current_user.user_id, room_id)
    if before_id:
        has_more = len(items) >= limit
    else:
        has_more = page * limit < total
    total_pages = (total + limit - 1) // limit if total else 0
    return MessageListResponse(
        items=[MessageResponse.model_validate(m) for m in reversed(items)],
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_more=has_more,
    )


@router.post("/rooms/{room_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    room_id: uuid.UUID,
    body: MessageCreateBody,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a message and broadcast it to subscribers of the room."""
    msg = await MessageService(db).create_message(current_user.user_id, room_id, body)
    return MessageResponse.model_validate(msg)


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: uuid.UUID,
    body: MessageUpdateBody,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    msg = await MessageService(db).edit_message(current_user.user_id, message_id, body.content)
    return MessageResponse.model_validate(msg)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    await MessageService(db).soft_delete_message(current_user, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- REST: Read positions ---

@router.post("/rooms/{room_id}/read", response_model=ReadPositionResponse)
async def mark_read(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    part = ReadPositionService(db).mark_read(current_user.user_id, room_id)
    return ReadPositionResponse(room_id=room_id, last_read_at=part.last_read_at)


@router.get("/rooms/{room_id}/unread", response_model=UnreadResponse)
async def get_unread(
    room_id: uuid.UUID,
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    count = ReadPositionService(db).get_unread_count(current_user.user_id, room_id)
    return UnreadResponse(room_id=room_id, unread_count=count)


@router.get("/dashboard", response_model=ChatDashboard)
async def get_dashboard(
    current_user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    limit: int = settings.CHAT_DASHBOARD_ROOMS,
):
    """Total unread plus the rooms most worth opening."""
    limit = _clamp(limit, settings.CHAT_DASHBOARD_ROOMS, maximum=20)
    return ReadPositionService(db).get_dashboard(current_user.user_id, limit=limit)


# --- REST: Uploads ---

@router.post("/uploads", response_model=UploadBatchResponse)
async def upload_files(
    files: List[UploadFile] = File(...),
    current_user: SessionUser = Depends(get_current_user),
):
    """Upload attachments ahead of sending. Each file succeeds or fails on its own."""
    # One byte past the limit is enough to reject an oversized file
    read_limit = settings.CHAT_MAX_FILE_SIZE + 1
    batch = []
    for f in files:
        batch.append((f.filename or "", await f.read(read_limit), f.content_type))
    result = upload_service.upload_many(batch)
    logger.info(
        "User %s uploaded %d file(s), %d rejected",
        current_user.user_id, len(result.uploaded), len(result.failed),
    )
    return result


# --- WebSocket ---

def _is_participant(room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    db = SessionLocal()
    try:
        part = chat_participant_crud.get_by_room_and_user(db, room_id=room_id, user_id=user_id)
        return part is not None
    finally:
        db.close()


@router.websocket("/ws")
async def websocket_chat(
    websocket: WebSocket,
    token: Optional[str] = None,
):
    """
    Real-time channel. Auth via query ?token=.

    Client actions: subscribe, unsubscribe, typing (each with room_id).
    Server events: message_created, message_updated, message_deleted,
    presence_sync, user_typing, error.
    """
    await websocket.accept()
    session = get_session(token) if token else None
    if not session:
        await websocket.close(code=4001)
        return
    user = SessionUser.model_validate(session)
    conn = Connection(websocket=websocket, user=user)

    async def send_error(code: str, message: str) -> None:
        await conn.send("error", payload={"code": code, "message": message})

    try:
        while True:
            data = await websocket.receive_text()
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                await send_error("INVALID_JSON", "Request body must be valid JSON.")
                continue
            if not isinstance(obj, dict):
                await send_error("INVALID_JSON", "Request body must be a JSON object.")
                continue
            action = obj.get("action")
            room_id_str = obj.get("room_id")
            if not room_id_str:
                await send_error("MISSING_ROOM_ID", "Missing required field: room_id.")
                continue
            try:
                room_id = uuid.UUID(str(room_id_str))
            except ValueError:
                await send_error("INVALID_ROOM_ID", "room_id must be a valid UUID.")
                continue
            if not _is_participant(room_id, user.user_id):
                await send_error("FORBIDDEN", "You are not a participant of this room.")
                continue
            if action == "subscribe":
                await connection_manager.subscribe(conn, room_id)
            elif action == "unsubscribe":
                await connection_manager.unsubscribe(conn, room_id)
            elif action == "typing":
                await connection_manager.broadcast_to_room(
                    room_id,
                    "user_typing",
                    {"user_id": str(user.user_id), "name": user.name, "typing": bool(obj.get("typing", False))},
                    exclude=conn,
                )
            else:
                await send_error(
                    "UNKNOWN_ACTION",
                    "Expected action: subscribe, unsubscribe, or typing.",
                )
    except WebSocketDisconnect:
        logger.debug("WebSocket %s disconnected", conn.key)
    except Exception as e:
        logger.warning("WebSocket closed: %s", e)
    finally:
        await connection_manager.disconnect(conn)
