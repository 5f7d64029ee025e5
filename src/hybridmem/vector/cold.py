"""Cold-tier backends.

A vector store hands demoted entries to a ``ColdStorage`` and pages them
back in on demand.  ``InMemoryColdStorage`` keeps them in a dict (for
ephemeral stores and tests); the disk-backed ``ChunkStore`` lives in
``hybridmem.persistence``.
"""

from __future__ import annotations

from collections.abc import Iterable
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from typing import runtime_checkable

from hybridmem.models.entries import EpisodicKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.entries import SemanticKind


@dataclass(frozen=True)
class ColdRecord:
    """Index-only view of a cold entry."""

    entry_id: str
    kind: EpisodicKind | SemanticKind
    timestamp: datetime


@runtime_checkable
class ColdStorage(Protocol):
    @property
    def corrupted_chunk_count(self) -> int: ...

    def contains(self, entry_id: str) -> bool: ...

    def records(self) -> list[ColdRecord]: ...

    async def put(self, entries: Sequence[MemoryEntry]) -> None:
        """Accept demoted entries."""

    async def persist(self, entries: Sequence[MemoryEntry]) -> set[str]:
        """Make *entries* durable; return the ids now durable."""

    async def fetch(self, entry_ids: Iterable[str]) -> dict[str, MemoryEntry]:
        """Page entries in.  Unreadable ids are omitted."""

    async def discard(self, entry_ids: Iterable[str]) -> None: ...


class InMemoryColdStorage:
    """Non-durable cold tier backed by a dict."""

    def __init__(self) -> None:
        self._entries: dict[str, MemoryEntry] = {}

    @property
    def corrupted_chunk_count(self) -> int:
        return 0

    def contains(self, entry_id: str) -> bool:
        return entry_id in self._entries

    def records(self) -> list[ColdRecord]:
        return [
            ColdRecord(entry_id=e.id, kind=e.kind, timestamp=e.timestamp)
            for e in self._entries.values()
        ]

    async def put(self, entries: Sequence[MemoryEntry]) -> None:
        for entry in entries:
            self._entries[entry.id] = entry

    async def persist(self, entries: Sequence[MemoryEntry]) -> set[str]:
        return set()

    async def fetch(self, entry_ids: Iterable[str]) -> dict[str, MemoryEntry]:
        return {i: self._entries[i] for i in entry_ids if i in self._entries}

    async def discard(self, entry_ids: Iterable[str]) -> None:
        for entry_id in entry_ids:
            self._entries.pop(entry_id, None)

    def __len__(self) -> int:
        return len(self._entries)
