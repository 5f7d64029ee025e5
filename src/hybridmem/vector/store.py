"""Tiered vector store with linear-scan cosine search.

Hot and warm entries keep their vectors in memory and are scanned on
every search.  Cold entries live in a ``ColdStorage`` backend and are
paged in only when the resident scan cannot fill ``top_k`` with results
above ``cold_relevance_floor``; paged-in entries that make the final
ranking are promoted back to warm.

Tier membership is guarded by a reader/writer lock: searches share it,
insert/remove/promotion/eviction take it exclusively.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np

from hybridmem.config import VectorStoreConfig
from hybridmem.errors import DimensionMismatch
from hybridmem.errors import EmptyStore
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.entries import EpisodicKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.entries import SemanticKind
from hybridmem.models.entries import Tier
from hybridmem.models.schemas import TierOccupancy
from hybridmem.observability import record_event
from hybridmem.observability import record_latency
from hybridmem.vector.cache import EmbeddingCache
from hybridmem.vector.cold import ColdStorage
from hybridmem.vector.cold import InMemoryColdStorage
from hybridmem.vector.locks import ReadWriteLock
from hybridmem.vector.similarity import as_vector
from hybridmem.vector.similarity import cosine_scores
from hybridmem.vector.tiers import Slot
from hybridmem.vector.tiers import TierIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryFilter:
    """Restrict a scan to one partition, category or session."""

    kind: Literal["episodic", "semantic"] | None = None
    category: ConceptCategory | None = None
    session_id: str | None = None

    @classmethod
    def episodic(cls, session_id: str | None = None) -> EntryFilter:
        return cls(kind="episodic", session_id=session_id)

    @classmethod
    def semantic(cls, category: ConceptCategory | None = None) -> EntryFilter:
        return cls(kind="semantic", category=category)

    def matches(self, kind: EpisodicKind | SemanticKind) -> bool:
        if isinstance(kind, EpisodicKind):
            if self.kind not in (None, "episodic") or self.category is not None:
                return False
            return self.session_id is None or kind.session_id == self.session_id
        if isinstance(kind, SemanticKind):
            if self.kind not in (None, "semantic") or self.session_id is not None:
                return False
            return self.category is None or kind.category == self.category
        raise TypeError(f"Unknown entry kind: {type(kind).__name__}")


def _accepts(flt: EntryFilter | None, slot: Slot) -> bool:
    return flt is None or flt.matches(slot.kind)


@dataclass(frozen=True)
class SearchHit:
    entry: MemoryEntry
    score: float
    tier: Tier


class VectorStore:
    """Fixed-dimension entry collection with hot/warm/cold tiers."""

    def __init__(
        self,
        dimension: int,
        config: VectorStoreConfig | None = None,
        *,
        cold_storage: ColdStorage | None = None,
        name: str = "store",
    ) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension
        self._config = config or VectorStoreConfig()
        self._cold: ColdStorage = cold_storage if cold_storage is not None else InMemoryColdStorage()
        self._index = TierIndex(self._config.hot_capacity, self._config.warm_capacity)
        self._lock = ReadWriteLock()
        # Ids hit by read-only searches, oldest first.
        self._touches: dict[str, None] = {}
        self.name = name
        self.cache = EmbeddingCache(self._config.cache_size)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def config(self) -> VectorStoreConfig:
        return self._config

    @property
    def cold_storage(self) -> ColdStorage:
        return self._cold

    @property
    def corrupted_chunk_count(self) -> int:
        return self._cold.corrupted_chunk_count

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def add(self, entry: MemoryEntry) -> None:
        """Insert *entry* into the hot tier, demoting LRU entries on overflow.

        Re-adding an existing id replaces the stored entry.
        """
        if len(entry.embedding) != self._dimension:
            raise DimensionMismatch(self._dimension, len(entry.embedding))
        async with self._lock.write():
            if entry.id in self._index:
                self._index.transition(entry.id, None)
                await self._cold.discard([entry.id])
            self._apply_touches()
            self._index.insert(entry)
            await self._rebalance()

    async def remove(self, entry_id: str) -> bool:
        """Drop *entry_id* from every tier.  Unknown ids are a no-op."""
        async with self._lock.write():
            slot = self._index.transition(entry_id, None)
            if slot is None:
                return False
            await self._cold.discard([entry_id])
            return True

    async def clear(self) -> None:
        async with self._lock.write():
            ids = [slot.entry_id for slot in self._index.slots()]
            self._index.clear()
            self._touches.clear()
            await self._cold.discard(ids)
            self.cache.clear()

    def _apply_touches(self) -> None:
        """Replay LRU refreshes recorded by read-only searches.  Caller holds the write lock."""
        touches, self._touches = self._touches, {}
        for entry_id in touches:
            self._index.touch(entry_id)

    async def _rebalance(self) -> None:
        """Cascade LRU demotions hot -> warm -> cold.  Caller holds the write lock."""
        to_warm = self._index.overflow(Tier.hot)
        for entry_id in to_warm:
            self._index.transition(entry_id, Tier.warm)

        to_cold = self._index.overflow(Tier.warm)
        if to_cold:
            entries = [
                slot.entry
                for slot in (self._index.get(i) for i in to_cold)
                if slot is not None and slot.entry is not None
            ]
            await self._cold.put(entries)
            for entry_id in to_cold:
                self._index.transition(entry_id, Tier.cold)

        if to_warm:
            record_event("vector.demoted_to_warm", len(to_warm))
        if to_cold:
            record_event("vector.demoted_to_cold", len(to_cold))
            logger.debug("%s: demoted %d entries to cold", self.name, len(to_cold))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: Sequence[float],
        top_k: int = 5,
        filter: EntryFilter | None = None,
    ) -> list[SearchHit]:
        """Rank entries by cosine similarity, newest first on ties.

        Raises ``DimensionMismatch`` for a wrong-sized query and
        ``EmptyStore`` when the store holds no entries at all.
        """
        started = time.perf_counter()
        ok = False
        try:
            hits = await self._search(query, top_k, filter)
            ok = True
            return hits
        finally:
            record_latency(
                operation="vector.search",
                duration_ms=(time.perf_counter() - started) * 1000,
                ok=ok,
            )

    async def _search(
        self,
        query: Sequence[float],
        top_k: int,
        flt: EntryFilter | None,
    ) -> list[SearchHit]:
        q = as_vector(query)
        if q.shape[0] != self._dimension:
            raise DimensionMismatch(self._dimension, int(q.shape[0]))
        if len(self._index) == 0:
            raise EmptyStore(f"{self.name} holds no entries")
        if top_k <= 0:
            return []

        paged: dict[str, MemoryEntry] = {}
        missing: list[str] = []
        async with self._lock.read():
            resident = [
                slot
                for slot in self._index.slots()
                if slot.resident and _accepts(flt, slot)
            ]
            candidates = self._score_slots(q, resident)

            strong = sum(1 for hit in candidates if hit.score >= self._config.cold_relevance_floor)
            if strong < top_k:
                cold_ids = [
                    slot.entry_id
                    for slot in self._index.slots(Tier.cold)
                    if _accepts(flt, slot)
                ]
                if cold_ids:
                    record_event("vector.cold_consults")
                    paged = await self._cold.fetch(cold_ids)
                    missing = [
                        i for i in cold_ids
                        if i not in paged and not self._cold.contains(i)
                    ]
                    candidates.extend(self._score_entries(q, paged.values()))

        candidates.sort(key=lambda hit: (-hit.score, -hit.entry.timestamp.timestamp()))
        results = candidates[:top_k]

        promote = [hit for hit in results if hit.tier is Tier.cold]
        if not promote and not missing:
            # LRU refresh waits for the next writer.
            for hit in results:
                self._touches.pop(hit.entry.id, None)
                self._touches[hit.entry.id] = None
            return results

        async with self._lock.write():
            self._apply_touches()
            for entry_id in missing:
                # Entry bytes were lost to a corrupted chunk.
                self._index.transition(entry_id, None)
            for hit in results:
                if hit.tier is not Tier.cold:
                    self._index.touch(hit.entry.id)
            promoted = 0
            for hit in promote:
                slot = self._index.get(hit.entry.id)
                if slot is not None and slot.tier is Tier.cold:
                    self._index.transition(hit.entry.id, Tier.warm, entry=hit.entry)
                    promoted += 1
            if promoted:
                record_event("vector.promoted", promoted)
                await self._rebalance()
        if missing:
            logger.warning("%s: dropped %d unreadable cold entries", self.name, len(missing))
        return results

    @staticmethod
    def _score_slots(query: np.ndarray, slots: list[Slot]) -> list[SearchHit]:
        if not slots:
            return []
        matrix = np.vstack([slot.vector for slot in slots])
        scores = cosine_scores(query, matrix)
        return [
            SearchHit(entry=slot.entry, score=float(score), tier=slot.tier)
            for slot, score in zip(slots, scores)
        ]

    @staticmethod
    def _score_entries(query: np.ndarray, entries) -> list[SearchHit]:
        entries = list(entries)
        if not entries:
            return []
        matrix = np.vstack([as_vector(e.embedding) for e in entries])
        scores = cosine_scores(query, matrix)
        return [
            SearchHit(entry=entry, score=float(score), tier=Tier.cold)
            for entry, score in zip(entries, scores)
        ]

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, entry_id: str) -> MemoryEntry | None:
        """Return the entry, paging it from cold storage without promotion."""
        slot = self._index.get(entry_id)
        if slot is None:
            return None
        if slot.entry is not None:
            return slot.entry
        fetched = await self._cold.fetch([entry_id])
        return fetched.get(entry_id)

    def tier_of(self, entry_id: str) -> Tier | None:
        slot = self._index.get(entry_id)
        return slot.tier if slot is not None else None

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._index

    def __len__(self) -> int:
        return len(self._index)

    def count(self, filter: EntryFilter | None = None) -> int:
        if filter is None:
            return len(self._index)
        return sum(1 for slot in self._index.slots() if filter.matches(slot.kind))

    def ids(self, filter: EntryFilter | None = None) -> list[str]:
        return [slot.entry_id for slot in self._index.slots() if _accepts(filter, slot)]

    def entries(self, filter: EntryFilter | None = None) -> list[MemoryEntry]:
        """Materialised (hot and warm) entries."""
        return [
            slot.entry
            for slot in self._index.slots()
            if slot.entry is not None and _accepts(filter, slot)
        ]

    def tier_occupancy(self) -> TierOccupancy:
        occ = self._index.occupancy()
        return TierOccupancy(hot=occ[Tier.hot], warm=occ[Tier.warm], cold=occ[Tier.cold])

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------

    async def checkpoint(self) -> int:
        """Hand unpersisted resident entries to the cold backend's writer."""
        async with self._lock.write():
            pending = [
                slot.entry
                for slot in self._index.slots()
                if slot.entry is not None and not slot.persisted
            ]
            if not pending:
                return 0
            durable = await self._cold.persist(pending)
            for entry_id in durable:
                slot = self._index.get(entry_id)
                if slot is not None:
                    slot.persisted = True
            return len(durable)

    def attach_cold_index(self) -> int:
        """Register every entry the cold backend knows about as cold."""
        added = 0
        for record in self._cold.records():
            if record.entry_id in self._index:
                continue
            self._index.register_cold(record.entry_id, record.kind, record.timestamp)
            added += 1
        return added
