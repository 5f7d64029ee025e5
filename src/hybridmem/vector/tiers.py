"""Tier bookkeeping for a vector store.

``TierIndex`` is an arena: every entry id maps to one ``Slot`` that
records its tier, and each tier keeps its own LRU order.  All tier
movement goes through ``transition`` so the legal moves live in one
place:

    (new)  -> hot           insert
    hot    -> warm          demotion
    warm   -> cold          demotion, drops the resident vector
    cold   -> warm          promotion after a page-in
    warm   -> hot           promotion on re-insert
    any    -> None          removal
    (load) -> cold          registration of persisted entries
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from hybridmem.models.entries import EpisodicKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.entries import SemanticKind
from hybridmem.models.entries import Tier

_ALLOWED: frozenset[tuple[Tier, Tier]] = frozenset({
    (Tier.hot, Tier.warm),
    (Tier.warm, Tier.cold),
    (Tier.cold, Tier.warm),
    (Tier.warm, Tier.hot),
})


class InvalidTransition(ValueError):
    """A tier move outside the allowed state machine."""


@dataclass
class Slot:
    """Arena cell for one entry.  ``entry``/``vector`` are None when cold."""

    entry_id: str
    kind: EpisodicKind | SemanticKind
    timestamp: datetime
    tier: Tier
    entry: MemoryEntry | None = None
    vector: np.ndarray | None = None
    persisted: bool = False

    @property
    def resident(self) -> bool:
        return self.entry is not None


class TierIndex:
    """id -> slot mapping plus per-tier LRU order."""

    def __init__(self, hot_capacity: int, warm_capacity: int) -> None:
        if hot_capacity < 1 or warm_capacity < 0:
            raise ValueError("hot_capacity must be >= 1 and warm_capacity >= 0")
        self.capacity: dict[Tier, int | None] = {
            Tier.hot: hot_capacity,
            Tier.warm: warm_capacity,
            Tier.cold: None,
        }
        self._slots: dict[str, Slot] = {}
        self._lru: dict[Tier, OrderedDict[str, None]] = {
            tier: OrderedDict() for tier in Tier
        }

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._slots

    def get(self, entry_id: str) -> Slot | None:
        return self._slots.get(entry_id)

    def count(self, tier: Tier) -> int:
        return len(self._lru[tier])

    def occupancy(self) -> dict[Tier, int]:
        return {tier: len(order) for tier, order in self._lru.items()}

    def slots(self, tier: Tier | None = None) -> list[Slot]:
        """Snapshot of slots, optionally restricted to one tier."""
        if tier is None:
            return list(self._slots.values())
        return [self._slots[i] for i in self._lru[tier]]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, entry: MemoryEntry) -> Slot:
        """Place a new entry at the MRU end of the hot tier."""
        if entry.id in self._slots:
            raise KeyError(f"Entry {entry.id} already indexed")
        slot = Slot(
            entry_id=entry.id,
            kind=entry.kind,
            timestamp=entry.timestamp,
            tier=Tier.hot,
            entry=entry,
            vector=np.asarray(entry.embedding, dtype=np.float64),
        )
        self._slots[entry.id] = slot
        self._lru[Tier.hot][entry.id] = None
        return slot

    def register_cold(
        self,
        entry_id: str,
        kind: EpisodicKind | SemanticKind,
        timestamp: datetime,
    ) -> Slot:
        """Index an entry whose bytes live only in cold storage."""
        slot = Slot(
            entry_id=entry_id,
            kind=kind,
            timestamp=timestamp,
            tier=Tier.cold,
            persisted=True,
        )
        self._slots[entry_id] = slot
        self._lru[Tier.cold][entry_id] = None
        return slot

    def touch(self, entry_id: str) -> None:
        slot = self._slots.get(entry_id)
        if slot is not None:
            self._lru[slot.tier].move_to_end(entry_id)

    def transition(
        self,
        entry_id: str,
        target: Tier | None,
        *,
        entry: MemoryEntry | None = None,
    ) -> Slot | None:
        """Move *entry_id* to *target*, or drop it when *target* is None.

        Promotion out of cold requires the paged-in *entry*.  Returns the
        slot (the removed one for ``None``), or None for an unknown id.
        """
        slot = self._slots.get(entry_id)
        if slot is None:
            return None

        if target is None:
            del self._slots[entry_id]
            self._lru[slot.tier].pop(entry_id, None)
            return slot

        if target is slot.tier:
            self._lru[target].move_to_end(entry_id)
            return slot
        if (slot.tier, target) not in _ALLOWED:
            raise InvalidTransition(f"{slot.tier.value} -> {target.value}")

        if slot.tier is Tier.cold:
            if entry is None or entry.id != entry_id:
                raise InvalidTransition("promotion from cold needs the paged-in entry")
            slot.entry = entry
            slot.vector = np.asarray(entry.embedding, dtype=np.float64)
        elif target is Tier.cold:
            slot.entry = None
            slot.vector = None

        self._lru[slot.tier].pop(entry_id, None)
        slot.tier = target
        self._lru[target][entry_id] = None
        return slot

    def overflow(self, tier: Tier) -> list[str]:
        """Ids beyond *tier*'s capacity, least recently used first."""
        limit = self.capacity[tier]
        order = self._lru[tier]
        if limit is None or len(order) <= limit:
            return []
        excess = len(order) - limit
        return [entry_id for entry_id, _ in zip(order, range(excess))]

    def clear(self) -> None:
        self._slots.clear()
        for order in self._lru.values():
            order.clear()
