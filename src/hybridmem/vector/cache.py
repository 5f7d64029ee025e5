"""Bounded LRU cache for text embeddings.

Owned by a single ``VectorStore`` (or embedder) instance; there is no
process-wide table, so independent stores never share cached vectors.
"""

from __future__ import annotations

from collections import OrderedDict


class EmbeddingCache:
    """LRU mapping ``text -> vector`` with a fixed capacity."""

    def __init__(self, capacity: int = 4096) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._capacity = capacity
        self._items: OrderedDict[str, tuple[float, ...]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> tuple[float, ...] | None:
        value = self._items.get(key)
        if value is None:
            self.misses += 1
            return None
        self._items.move_to_end(key)
        self.hits += 1
        return value

    def put(self, key: str, vector: list[float] | tuple[float, ...]) -> None:
        if self._capacity == 0:
            return
        self._items[key] = tuple(vector)
        self._items.move_to_end(key)
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items
