from app.crud.user_crud import user_crud
from app.crud.chat_room_crud import chat_room_crud
from app.crud.chat_participant_crud import chat_participant_crud
from app.crud.chat_message_crud import chat_message_crud
from app.crud.message_attachment_crud import message_attachment_crud

__all__ = [
    "user_crud",
    "chat_room_crud",
    "chat_participant_crud",
    "chat_message_crud",
    "message_attachment_crud",
]
