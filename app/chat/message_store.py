"""
Ordered, id-unique message list for the room currently on screen.

Holds one room only: switching rooms calls clear() and the next room is
fetched again from persistence.
"""
import bisect
import uuid
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from app.schema.chat import MessageResponse


def _sort_key(message: MessageResponse) -> Tuple:
    return (message.created_at, str(message.id))


class MessageStore:
    """Messages ascending by created_at, plus the backward pagination cursor."""

    def __init__(self) -> None:
        self._items: List[MessageResponse] = []
        self._by_id: Dict[uuid.UUID, MessageResponse] = {}
        self.page = 1
        self.has_more = True

    # --- Reads ---

    @property
    def messages(self) -> List[MessageResponse]:
        return list(self._items)

    def get(self, message_id: uuid.UUID) -> Optional[MessageResponse]:
        return self._by_id.get(message_id)

    def oldest(self) -> Optional[MessageResponse]:
        return self._items[0] if self._items else None

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[MessageResponse]:
        return iter(list(self._items))

    # --- Writes ---

    def load(self, messages: Iterable[MessageResponse], page_size: int) -> None:
        """Replace contents with the first (most recent) page."""
        fresh = self._dedupe(messages, {})
        self._items = sorted(fresh, key=_sort_key)
        self._by_id = {m.id: m for m in self._items}
        self.page = 1
        self.has_more = len(fresh) >= page_size

    def prepend(self, older: Iterable[MessageResponse], page_size: int) -> int:
        """Add an older page. Ids already present are skipped. Returns how many were added."""
        batch = list(older)
        fresh = self._dedupe(batch, self._by_id)
        if fresh:
            self._items = sorted(fresh + self._items, key=_sort_key)
            for m in fresh:
                self._by_id[m.id] = m
        self.page += 1
        self.has_more = len(batch) >= page_size
        return len(fresh)

    def append(self, message: MessageResponse) -> bool:
        """Add a new message. Returns False when the id is already present."""
        if message.id in self._by_id:
            return False
        if not self._items or _sort_key(message) >= _sort_key(self._items[-1]):
            self._items.append(message)
        else:
            bisect.insort(self._items, message, key=_sort_key)
        self._by_id[message.id] = message
        return True

    def update_in_place(self, message: MessageResponse) -> bool:
        """Apply an edit to the message with the same id; position is unchanged."""
        current = self._by_id.get(message.id)
        if current is None:
            return False
        updated = current.model_copy(
            update={
                "content": message.content,
                "is_edited": message.is_edited,
                "updated_at": message.updated_at or current.updated_at,
            }
        )
        index = self._index_of(current)
        self._items[index] = updated
        self._by_id[message.id] = updated
        return True

    def remove_by_id(self, message_id: uuid.UUID) -> bool:
        current = self._by_id.pop(message_id, None)
        if current is None:
            return False
        del self._items[self._index_of(current)]
        return True

    def clear(self) -> None:
        self._items = []
        self._by_id = {}
        self.page = 1
        self.has_more = True

    # --- Helpers ---

    def _index_of(self, message: MessageResponse) -> int:
        index = bisect.bisect_left(self._items, _sort_key(message), key=_sort_key)
        while self._items[index].id != message.id:
            index += 1
        return index

    @staticmethod
    def _dedupe(
        messages: Iterable[MessageResponse], existing: Dict[uuid.UUID, MessageResponse]
    ) -> List[MessageResponse]:
        seen = set(existing)
        out = []
        for m in messages:
            if m.id in seen:
                continue
            seen.add(m.id)
            out.append(m)
        return out
