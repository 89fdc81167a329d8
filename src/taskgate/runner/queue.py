"""
runner/queue.py — Per-lane priority queue

Pending items ordered by priority (descending), then enqueue sequence
(ascending). Backed by heapq on the key (-priority, sequence); entries
removed while pending are marked dead and skipped on dequeue.
"""

from __future__ import annotations

import heapq
from typing import Generic, Iterator, Optional, Protocol, TypeVar


class Orderable(Protocol):
    @property
    def priority(self) -> float: ...

    @property
    def sequence(self) -> int: ...


T = TypeVar("T", bound=Orderable)


class _Entry(Generic[T]):
    __slots__ = ("key", "item")

    def __init__(self, item: T) -> None:
        self.key = (-item.priority, item.sequence)
        self.item: Optional[T] = item

    def __lt__(self, other: "_Entry[T]") -> bool:
        return self.key < other.key


class PriorityQueue(Generic[T]):
    """
    Usage::

        q = PriorityQueue()
        q.enqueue(item)          # item exposes .priority and .sequence
        head = q.dequeue()       # None when empty
    """

    def __init__(self) -> None:
        self._heap: list[_Entry[T]] = []
        self._entries: dict[int, _Entry[T]] = {}   # id(item) -> live entry

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __contains__(self, item: object) -> bool:
        return id(item) in self._entries

    def enqueue(self, item: T) -> None:
        if id(item) in self._entries:
            raise ValueError("item is already queued")
        entry = _Entry(item)
        self._entries[id(item)] = entry
        heapq.heappush(self._heap, entry)

    def dequeue(self) -> Optional[T]:
        while self._heap:
            entry = heapq.heappop(self._heap)
            if entry.item is not None:
                item = entry.item
                del self._entries[id(item)]
                return item
        return None

    def discard(self, item: T) -> bool:
        """Remove a pending item. Returns False if it was not queued."""
        entry = self._entries.pop(id(item), None)
        if entry is None:
            return False
        entry.item = None
        return True

    def drain(self) -> Iterator[T]:
        """Yield and remove every pending item in dispatch order."""
        while True:
            item = self.dequeue()
            if item is None:
                return
            yield item
