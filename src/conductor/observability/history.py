"""Fixed-capacity ring buffer for execution history.

Appending to a full buffer overwrites the oldest slot in place; memory use
is constant. Not thread-safe on its own: the monitor guards it with its
lock.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Bounded history, oldest evicted first."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._slots: list[T | None] = [None] * capacity
        self._next = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return self._size

    def append(self, item: T) -> T | None:
        """Store ``item`` and return the evicted element, if any."""
        evicted = self._slots[self._next] if self._size == self.capacity else None
        self._slots[self._next] = item
        self._next = (self._next + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)
        return evicted

    def newest_first(self, limit: int | None = None) -> list[T]:
        count = self._size if limit is None else max(0, min(limit, self._size))
        result: list[T] = []
        for offset in range(1, count + 1):
            item = self._slots[(self._next - offset) % self.capacity]
            result.append(item)  # type: ignore[arg-type]
        return result

    def __iter__(self) -> Iterator[T]:
        """Oldest to newest."""
        return iter(reversed(self.newest_first()))

    def clear(self) -> None:
        self._slots = [None] * self.capacity
        self._next = 0
        self._size = 0
