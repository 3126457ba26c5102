"""
Registry of message ids sent from this session, used to drop change-feed echoes.

Bounded LRU (OrderedDict, O(1) lookup) so a long session does not grow it forever.
"""
import uuid
from collections import OrderedDict
from typing import Optional

from app.core.config import settings


class OptimisticIdRegistry:
    def __init__(self, capacity: Optional[int] = None) -> None:
        self.capacity = capacity or settings.CHAT_OPTIMISTIC_ID_CAPACITY
        self._ids: "OrderedDict[uuid.UUID, None]" = OrderedDict()

    def register(self, message_id: uuid.UUID) -> None:
        if message_id in self._ids:
            self._ids.move_to_end(message_id)
            return
        self._ids[message_id] = None
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)

    def discard(self, message_id: uuid.UUID) -> None:
        self._ids.pop(message_id, None)

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, message_id: object) -> bool:
        if message_id not in self._ids:
            return False
        self._ids.move_to_end(message_id)
        return True

    def __len__(self) -> int:
        return len(self._ids)
