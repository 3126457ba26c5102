from app.model.user import User
from app.model.chat_room import ChatRoom
from app.model.chat_participant import ChatParticipant
from app.model.chat_message import ChatMessage
from app.model.message_attachment import MessageAttachment

__all__ = ["User", "ChatRoom", "ChatParticipant", "ChatMessage", "MessageAttachment"]
