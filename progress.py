"""
Byte accounting for one upload session: expected sizes and bytes sent.
"""

from __future__ import annotations

from errors import InvariantViolation


def _ceil_percent(done: int, total: int) -> int:
    """ceil(100 * done / total) without float rounding."""
    return (100 * done + total - 1) // total


class SizeRegistry:
    """Expected size of every item enqueued in the current session."""

    def __init__(self) -> None:
        self._sizes: dict[int, int] = {}

    def record(self, item_id: int, size: int) -> None:
        if item_id in self._sizes:
            raise InvariantViolation(f"size already recorded for item #{item_id}")
        if size < 0:
            raise ValueError(f"negative size for item #{item_id}: {size}")
        self._sizes[item_id] = size

    def discard(self, item_id: int) -> None:
        self._sizes.pop(item_id, None)

    def size_of(self, item_id: int) -> int:
        return self._sizes.get(item_id, 0)

    def total_size(self) -> int:
        return sum(self._sizes.values())

    def clear(self) -> None:
        self._sizes.clear()

    def __len__(self) -> int:
        return len(self._sizes)

    def __contains__(self, item_id: int) -> bool:
        return item_id in self._sizes


class ProgressTracker:
    """Bytes transferred per item.

    Values are absolute offsets, never deltas. A sample smaller than the one
    already stored is ignored (monotonic max) and samples are capped at the
    item's size, so aggregate progress can only move forward.
    """

    def __init__(self) -> None:
        self._loaded: dict[int, int] = {}

    def set_progress(self, item_id: int, loaded: int, size: int) -> int:
        value = max(0, min(loaded, size))
        previous = self._loaded.get(item_id)
        if previous is not None and previous >= value:
            return previous
        self._loaded[item_id] = value
        return value

    def loaded(self, item_id: int) -> int:
        return self._loaded.get(item_id, 0)

    def discard(self, item_id: int) -> None:
        self._loaded.pop(item_id, None)

    def aggregate_progress(self, sizes: SizeRegistry) -> int:
        if not self._loaded:
            return 0
        total = sizes.total_size()
        if total == 0:
            return 0
        return _ceil_percent(sum(self._loaded.values()), total)

    def item_progress(self, item_id: int, sizes: SizeRegistry, is_dir: bool) -> int:
        if is_dir:
            return 100
        size = sizes.size_of(item_id)
        if size == 0:
            return 0
        return _ceil_percent(self._loaded.get(item_id, 0), size)

    def clear(self) -> None:
        self._loaded.clear()
