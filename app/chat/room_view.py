"""
Room view: the state behind one open chat screen.

Owns the message store for the active room, the registry of locally sent
message ids, the change-feed subscription, presence and the scroll badge.
Everything is driven from one event loop; no locking beyond keeping change
events in arrival order.

Lifecycle:
    select_room(room) -> load newest page -> subscribe -> track presence -> mark read
    leave_room()      -> unsubscribe -> untrack presence -> clear store

Actions (send, edit, delete, load_more, add_attachments) never raise: failures
are reported through the notifier, like a toast.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Set

from app.chat.change_feed import ChangeEvent, ChangeKind, Subscription
from app.chat.gateway import ChatGateway
from app.chat.message_store import MessageStore
from app.chat.optimistic import OptimisticIdRegistry
from app.chat.presence import PresenceMeta
from app.core.config import settings
from app.core.exceptions import AppException, SubscriptionError, ValidationError
from app.model.enums import WRITE_PERMISSIONS, MessageType
from app.schema.chat import (
    AttachmentResponse,
    MessageCreateBody,
    MessageResponse,
    RoomResponse,
    SessionUser,
    UploadBatchResponse,
    UploadedFile,
    UserSummary,
)
from app.service.upload_service import FileInput
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

# notify(level, message); level is "info" or "error"
Notifier = Callable[[str, str], None]


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "UNSUBSCRIBED"
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"


@dataclass
class ScrollState:
    pinned: bool = True
    new_messages: int = 0  # badge shown while scrolled up
    auto_scrolls: int = 0


def _log_notifier(level: str, message: str) -> None:
    if level == "error":
        logger.error(message)
    else:
        logger.info(message)


class RoomView:
    def __init__(
        self,
        gateway: ChatGateway,
        user: SessionUser,
        notify: Optional[Notifier] = None,
        page_size: Optional[int] = None,
        optimistic_capacity: Optional[int] = None,
    ) -> None:
        self.gateway = gateway
        self.user = user
        self.notify = notify or _log_notifier
        self.page_size = page_size or settings.CHAT_PAGE_SIZE
        self.connection_key = f"{user.user_id}:{uuid.uuid4()}"

        self.store = MessageStore()
        self.optimistic_ids = OptimisticIdRegistry(optimistic_capacity)
        self.current_room: Optional[RoomResponse] = None
        self.permission: Optional[str] = None
        self.subscription_state = SubscriptionState.UNSUBSCRIBED
        self.online_count = 0
        self.scroll = ScrollState()
        self.pending_attachments: List[UploadedFile] = []

        self._subscription: Optional[Subscription] = None
        self._unlisten_presence: Optional[Callable[[], None]] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._event_lock = asyncio.Lock()
        self._authors = {
            user.user_id: UserSummary(
                id=user.user_id, name=user.name, email=user.email, avatar_url=user.avatar_url
            )
        }

    @property
    def messages(self) -> List[MessageResponse]:
        return self.store.messages

    @property
    def room_id(self) -> Optional[uuid.UUID]:
        return self.current_room.id if self.current_room else None

    @property
    def can_write(self) -> bool:
        return self.permission in WRITE_PERMISSIONS

    # --- Room lifecycle ---

    async def select_room(self, room_id: uuid.UUID) -> bool:
        await self.leave_room()
        try:
            room = await self.gateway.get_room(self.user.user_id, room_id)
            permission = await self.gateway.get_permission(self.user.user_id, room_id)
            self.current_room = room
            self.permission = permission
            newest_first = await self.gateway.fetch_messages(
                self.user.user_id, room_id, self.page_size
            )
        except AppException as e:
            self.current_room = None
            self.permission = None
            self.notify("error", e.message)
            return False
        if self.room_id != room_id:
            return False
        self.store.load(reversed(newest_first), self.page_size)

        try:
            await self._subscribe(room_id)
        except SubscriptionError as e:
            self.notify("error", e.message)
        self._join_presence(room_id)
        try:
            await self.gateway.mark_read(self.user.user_id, room_id)
        except AppException as e:
            self.notify("error", e.message)
        logger.info("Room %s opened by %s (%d messages)", room_id, self.user.user_id, len(self.store))
        return True

    async def leave_room(self) -> None:
        """Tear down the active room. Late events for it become no-ops."""
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        sub, self._subscription = self._subscription, None
        if sub is not None:
            await self.gateway.unsubscribe(sub)
        self._reset()

    def _reset(self) -> None:
        self.subscription_state = SubscriptionState.UNSUBSCRIBED
        if self._unlisten_presence:
            self._unlisten_presence()
            self._unlisten_presence = None
        if self.current_room is not None:
            self.gateway.presence.untrack(self.current_room.id, self.connection_key)
        self.current_room = None
        self.permission = None
        self.online_count = 0
        self.pending_attachments = []
        self.scroll = ScrollState()
        self.store.clear()
        self.optimistic_ids.clear()

    async def close(self) -> None:
        await self.wait_for_pending()
        await self.leave_room()

    async def wait_for_pending(self) -> None:
        """Wait for background persistence started by send_message."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Pagination ---

    async def load_more(self) -> int:
        """Fetch the next older page. Returns how many messages were added."""
        if self.current_room is None or not self.store.has_more:
            return 0
        room_id = self.current_room.id
        oldest = self.store.oldest()
        try:
            newest_first = await self.gateway.fetch_messages(
                self.user.user_id,
                room_id,
                self.page_size,
                before_id=oldest.id if oldest else None,
            )
        except AppException as e:
            self.notify("error", e.message)
            return 0
        if self.room_id != room_id:
            return 0
        return self.store.prepend(reversed(newest_first), self.page_size)

    # --- Optimistic send ---

    async def send_message(self, content: Optional[str] = None) -> Optional[MessageResponse]:
        """
        Show the message immediately, then persist it in the background.

        The id is generated here so the change feed's echo can be recognised
        and dropped. A failed write is reported but the message stays on
        screen.
        """
        try:
            message = self._build_optimistic(content)
        except ValidationError as e:
            self.notify("error", e.message)
            return None

        self.store.append(message)
        self.optimistic_ids.register(message.id)
        uploads, self.pending_attachments = self.pending_attachments, []
        self.scroll_to_bottom()

        body = MessageCreateBody(
            id=message.id,
            content=message.content,
            attachments=uploads,
        )
        task = asyncio.get_running_loop().create_task(self._persist(message.room_id, body))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return message

    def _build_optimistic(self, content: Optional[str]) -> MessageResponse:
        if self.current_room is None:
            raise ValidationError(message="Please select a room first.")
        if not self.can_write:
            raise ValidationError(message="You have read-only access to this room.")
        text = (content or "").strip() or None
        if text is None and not self.pending_attachments:
            raise ValidationError(message="Message can not be empty.")
        if text and len(text) > settings.CHAT_MAX_MESSAGE_LENGTH:
            raise ValidationError(
                message=f"Message is longer than {settings.CHAT_MAX_MESSAGE_LENGTH} characters."
            )
        now = utcnow()
        message_id = uuid.uuid4()
        attachments = [
            AttachmentResponse(
                id=uuid.uuid4(),
                message_id=message_id,
                file_name=f.name,
                file_path=f.url,
                file_size=f.size,
                mime_type=f.type,
                created_at=now,
            )
            for f in self.pending_attachments
        ]
        return MessageResponse(
            id=message_id,
            room_id=self.current_room.id,
            user_id=self.user.user_id,
            content=text,
            message_type=MessageType.FILE if attachments else MessageType.TEXT,
            created_at=now,
            updated_at=now,
            user=self._authors[self.user.user_id],
            attachments=attachments,
        )

    async def _persist(self, room_id: uuid.UUID, body: MessageCreateBody) -> None:
        try:
            await self.gateway.insert_message(self.user, room_id, body)
        except AppException as e:
            self.notify("error", f"Failed to send message: {e.message}")
        except Exception as e:
            logger.exception("Unexpected error sending message %s: %s", body.id, e)
            self.notify("error", "Failed to send message.")

    # --- Edit / delete ---

    async def edit_message(self, message_id: uuid.UUID, content: str) -> bool:
        """Persist an edit. The store changes when the UPDATE event arrives."""
        try:
            await self.gateway.update_message(self.user, message_id, content)
        except AppException as e:
            self.notify("error", f"Edit failed: {e.message}")
            return False
        return True

    async def delete_message(self, message_id: uuid.UUID) -> bool:
        try:
            await self.gateway.delete_message(self.user, message_id)
        except AppException as e:
            self.notify("error", f"Delete failed: {e.message}")
            return False
        self.store.remove_by_id(message_id)
        return True

    # --- Attachments ---

    async def add_attachments(self, files: Sequence[FileInput]) -> UploadBatchResponse:
        """Upload files now and hold them for the next send. Each file succeeds or fails alone."""
        result = await self.gateway.upload(files)
        self.pending_attachments.extend(result.uploaded)
        for failure in result.failed:
            self.notify("error", failure.message)
        return result

    def remove_pending_attachment(self, url: str) -> None:
        self.pending_attachments = [f for f in self.pending_attachments if f.url != url]

    # --- Scroll ---

    def set_scroll_pinned(self, pinned: bool) -> None:
        self.scroll.pinned = pinned
        if pinned:
            self.scroll.new_messages = 0

    def scroll_to_bottom(self) -> None:
        self.scroll.pinned = True
        self.scroll.new_messages = 0
        self.scroll.auto_scrolls += 1

    # --- Change feed ---

    async def _subscribe(self, room_id: uuid.UUID) -> None:
        self.subscription_state = SubscriptionState.SUBSCRIBING
        sub: Optional[Subscription] = None

        async def handler(event: ChangeEvent) -> None:
            await self.handle_event(sub, event)

        try:
            sub = await self.gateway.subscribe(
                room_id, handler, self._on_subscription_closed, user_id=self.user.user_id
            )
        except Exception as e:
            self.subscription_state = SubscriptionState.UNSUBSCRIBED
            logger.warning("Subscribe to room %s failed: %s", room_id, e)
            raise SubscriptionError()
        if self.room_id != room_id:
            await self.gateway.unsubscribe(sub)
            return
        self._subscription = sub
        self.subscription_state = SubscriptionState.SUBSCRIBED

    async def handle_event(self, subscription: Optional[Subscription], event: ChangeEvent) -> None:
        """Apply one change event, in arrival order, if it belongs to the open room."""
        async with self._event_lock:
            if not self._is_live(subscription, event):
                return
            if event.kind == ChangeKind.INSERT:
                await self._on_insert(subscription, event)
            elif event.kind == ChangeKind.UPDATE:
                message = MessageResponse.model_validate(event.record)
                if message.is_deleted:
                    self.store.remove_by_id(message.id)
                else:
                    self.store.update_in_place(message)
            elif event.kind == ChangeKind.DELETE:
                self.store.remove_by_id(event.record_id)

    async def _on_insert(self, subscription: Optional[Subscription], event: ChangeEvent) -> None:
        message_id = event.record_id
        if message_id in self.optimistic_ids or message_id in self.store:
            return
        message = MessageResponse.model_validate(event.record)
        try:
            author = await self._resolve_author(message.user_id)
        except AppException as e:
            self.notify("error", e.message)
            return
        if not self._is_live(subscription, event):
            return
        if not self.store.append(message.model_copy(update={"user": author})):
            return
        if self.scroll.pinned:
            self.scroll.auto_scrolls += 1
        else:
            self.scroll.new_messages += 1

    async def _resolve_author(self, user_id: uuid.UUID) -> UserSummary:
        author = self._authors.get(user_id)
        if author is None:
            author = await self.gateway.get_user(user_id)
            self._authors[user_id] = author
        return author

    def _is_live(self, subscription: Optional[Subscription], event: ChangeEvent) -> bool:
        return (
            subscription is not None
            and subscription is self._subscription
            and subscription.active
            and self.current_room is not None
            and event.room_id == self.current_room.id
        )

    def _on_subscription_closed(self, subscription: Subscription) -> None:
        """
        The feed dropped us. Reconnect unless the room was left meanwhile.

        A revoked subscription means our access to the room is gone: the room
        is closed instead.
        """
        if subscription is not self._subscription:
            return
        self._subscription = None
        if subscription.revoked:
            logger.info("Access to room %s revoked for %s", subscription.room_id, self.user.user_id)
            self._reset()
            self.notify("error", "You no longer have access to this room.")
            return
        self.subscription_state = SubscriptionState.UNSUBSCRIBED
        logger.warning("Change feed dropped room %s; reconnecting", subscription.room_id)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect(subscription.room_id)
        )

    async def _reconnect(self, room_id: uuid.UUID) -> None:
        delay = settings.CHAT_FEED_RECONNECT_BASE_DELAY
        for attempt in range(1, settings.CHAT_FEED_RECONNECT_ATTEMPTS + 1):
            await asyncio.sleep(delay)
            if self.room_id != room_id:
                return
            try:
                await self._subscribe(room_id)
                logger.info("Resubscribed to room %s after %d attempt(s)", room_id, attempt)
                return
            except SubscriptionError:
                delay = min(delay * 2, settings.CHAT_FEED_RECONNECT_MAX_DELAY)
        self.notify("error", SubscriptionError.message)

    # --- Presence ---

    def _join_presence(self, room_id: uuid.UUID) -> None:
        def on_sync(rid: uuid.UUID, count: int, user_ids: Set[uuid.UUID]) -> None:
            if rid == self.room_id:
                self.online_count = count

        self._unlisten_presence = self.gateway.presence.listen(room_id, on_sync)
        self.gateway.presence.track(
            room_id,
            self.connection_key,
            PresenceMeta(user_id=self.user.user_id, user_name=self.user.name),
        )
