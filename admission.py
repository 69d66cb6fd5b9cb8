"""
FIFO queue of pending uploads plus the bounded set currently in flight.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from config import UPLOADS_LIMIT
from errors import ConfigurationError, InvariantViolation
from items import Item


class AdmissionQueue:
    """Admits pending items in enqueue order while capacity allows."""

    def __init__(self, limit: int = UPLOADS_LIMIT):
        if limit <= 0:
            raise ConfigurationError(f"uploads limit must be positive, got {limit}")
        self.limit = limit
        self._pending: deque[Item] = deque()
        self._in_flight: dict[int, Item] = {}

    def push(self, item: Item) -> None:
        self._pending.append(item)

    def admit_next(self) -> Optional[Item]:
        """Move the head of the queue in flight. None when nothing can be admitted."""
        if len(self._in_flight) > self.limit:
            raise InvariantViolation(
                f"{len(self._in_flight)} uploads in flight, limit is {self.limit}"
            )
        if not self._pending or len(self._in_flight) >= self.limit:
            return None

        item = self._pending.popleft()
        if item.id in self._in_flight:
            raise InvariantViolation(f"item #{item.id} is already in flight")
        self._in_flight[item.id] = item
        return item

    def release(self, item_id: int) -> Item:
        try:
            return self._in_flight.pop(item_id)
        except KeyError:
            raise InvariantViolation(f"item #{item_id} is not in flight (settled twice?)")

    def remove_pending(self, item_id: int) -> Optional[Item]:
        for item in self._pending:
            if item.id == item_id:
                self._pending.remove(item)
                return item
        return None

    def is_empty(self) -> bool:
        return not self._pending and not self._in_flight

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def pending_count(self) -> int:
        return len(self._pending)

    def in_flight_items(self) -> list[Item]:
        return list(self._in_flight.values())

    def pending_items(self) -> list[Item]:
        return list(self._pending)

    def clear(self) -> None:
        self._pending.clear()
        self._in_flight.clear()
