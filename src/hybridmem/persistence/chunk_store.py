"""Disk-backed cold tier: append-only entry chunks plus an id index.

Directory layout::

    <dir>/index.json           id -> (chunk, offset, kind, timestamp),
                               chunk -> (checksum, count)
    <dir>/chunk_000001.hmc     encoded list of MemoryEntry dicts
    ...

New entries accumulate in a pending buffer and are written as a fresh
chunk, so a save never rewrites existing chunks.  The index is published
only after the chunk it references is in place; chunks the index does not
mention are ignored.  Chunk bytes are verified against the index at load
and paged in lazily on ``fetch``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import PersistenceConfig
from hybridmem.errors import CorruptedChunk
from hybridmem.errors import StoreNotLoaded
from hybridmem.models.entries import EntryKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.observability import record_event
from hybridmem.persistence.chunks import CHUNK_SUFFIX
from hybridmem.persistence.chunks import atomic_write_bytes
from hybridmem.persistence.chunks import atomic_write_json
from hybridmem.persistence.chunks import chunk_checksum
from hybridmem.persistence.chunks import encode_chunk
from hybridmem.persistence.chunks import read_chunk
from hybridmem.persistence.chunks import remove_stale_temp_files
from hybridmem.persistence.chunks import verify_chunk
from hybridmem.vector.cold import ColdRecord

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"


# ---------------------------------------------------------------------------
# Index models
# ---------------------------------------------------------------------------


class ChunkInfo(BaseModel):
    checksum: str = Field(description="Hex SHA-256 of the compressed body.")
    count: int = Field(ge=0, description="Entries written into the chunk.")


class IndexEntry(BaseModel):
    chunk: str
    offset: int = Field(ge=0)
    kind: EntryKind
    timestamp: datetime


class ChunkIndex(BaseModel):
    version: int = 1
    next_seq: int = 1
    chunks: dict[str, ChunkInfo] = Field(default_factory=dict)
    entries: dict[str, IndexEntry] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ChunkStore:
    """``ColdStorage`` implementation persisting entries in chunk files."""

    def __init__(
        self,
        directory: Path | str,
        config: PersistenceConfig | None = None,
        *,
        audit: AuditLogger | None = None,
        partition: str = "",
    ) -> None:
        self.directory = Path(directory)
        self.config = config or PersistenceConfig()
        self.partition = partition or self.directory.name
        self._audit = audit
        self._index = ChunkIndex()
        self._pending: dict[str, MemoryEntry] = {}
        self._corrupted: list[str] = []
        self._index_dirty = False
        self._loaded = False
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def corrupted_chunks(self) -> list[str]:
        return list(self._corrupted)

    @property
    def corrupted_chunk_count(self) -> int:
        return len(self._corrupted)

    @property
    def chunk_names(self) -> list[str]:
        return sorted(self._index.chunks)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def contains(self, entry_id: str) -> bool:
        return entry_id in self._pending or entry_id in self._index.entries

    def is_durable(self, entry_id: str) -> bool:
        return entry_id in self._index.entries

    def records(self) -> list[ColdRecord]:
        records = [
            ColdRecord(entry_id=entry_id, kind=rec.kind, timestamp=rec.timestamp)
            for entry_id, rec in self._index.entries.items()
        ]
        records.extend(
            ColdRecord(entry_id=e.id, kind=e.kind, timestamp=e.timestamp)
            for e in self._pending.values()
        )
        return records

    def live_counts(self) -> dict[str, int]:
        counts = {name: 0 for name in self._index.chunks}
        for rec in self._index.entries.values():
            counts[rec.chunk] = counts.get(rec.chunk, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._index.entries) + len(self._pending)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(self) -> list[str]:
        """Read the index and verify every referenced chunk.

        Damaged or missing chunks are skipped: their entries leave the
        index and the chunk name is reported.  Returns the corrupted names.
        """
        async with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(remove_stale_temp_files, self.directory)
            self._index = await asyncio.to_thread(self._read_index)
            self._pending.clear()
            self._index_dirty = False
            self._loaded = True
            if self.config.verify_checksums:
                for name, info in list(self._index.chunks.items()):
                    try:
                        await asyncio.to_thread(self._verify_file, name, info.checksum)
                    except CorruptedChunk as exc:
                        await self._mark_corrupted(name, exc.reason)
            if self._index_dirty:
                await self._publish_index()
            return list(self._corrupted)

    def _read_index(self) -> ChunkIndex:
        path = self.directory / INDEX_FILE
        if not path.exists():
            return ChunkIndex()
        try:
            return ChunkIndex.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError, OSError):
            logger.warning("Unreadable chunk index %s; starting with an empty index", path)
            self._corrupted.append(INDEX_FILE)
            record_event("persistence.corrupted_chunks")
            return ChunkIndex()

    def _verify_file(self, name: str, checksum: str) -> None:
        path = self.directory / name
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise CorruptedChunk(str(path), "missing file") from exc
        verify_chunk(data, str(path), checksum)

    async def _mark_corrupted(self, name: str, reason: str) -> None:
        dropped = [i for i, rec in self._index.entries.items() if rec.chunk == name]
        for entry_id in dropped:
            del self._index.entries[entry_id]
        self._index.chunks.pop(name, None)
        self._index_dirty = True
        if name not in self._corrupted:
            self._corrupted.append(name)
        record_event("persistence.corrupted_chunks")
        logger.warning(
            "Skipping corrupted chunk %s/%s (%s); %d entries lost",
            self.partition,
            name,
            reason,
            len(dropped),
        )
        await emit_event(
            self._audit,
            AuditEventType.CHUNK_CORRUPTED,
            partition=self.partition,
            chunk=name,
            reason=reason,
            entries_lost=len(dropped),
        )

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def put(self, entries: Sequence[MemoryEntry]) -> None:
        """Buffer demoted entries; write full chunks as they fill up."""
        async with self._lock:
            self._buffer(entries)
            while len(self._pending) >= self.config.chunk_size:
                batch = list(self._pending.values())[: self.config.chunk_size]
                await self._write_chunk(batch)

    async def persist(self, entries: Sequence[MemoryEntry]) -> set[str]:
        async with self._lock:
            self._buffer(entries)
            await self._drain()
            return {e.id for e in entries if e.id in self._index.entries}

    async def flush(self) -> int:
        """Write every pending entry and any deferred index change."""
        async with self._lock:
            written = await self._drain()
            if self._index_dirty:
                await self._publish_index()
            return written

    def _buffer(self, entries: Sequence[MemoryEntry]) -> None:
        for entry in entries:
            if entry.id not in self._index.entries:
                self._pending[entry.id] = entry

    async def _drain(self) -> int:
        written = 0
        while self._pending:
            batch = list(self._pending.values())[: self.config.chunk_size]
            await self._write_chunk(batch)
            written += len(batch)
        return written

    async def _write_chunk(self, batch: list[MemoryEntry]) -> str:
        self._check_loaded()
        name = f"chunk_{self._index.next_seq:06d}{CHUNK_SUFFIX}"
        payload = {"entries": [e.model_dump(mode="json") for e in batch]}
        data = encode_chunk(payload)
        await asyncio.to_thread(atomic_write_bytes, self.directory / name, data)

        self._index.next_seq += 1
        self._index.chunks[name] = ChunkInfo(checksum=chunk_checksum(data), count=len(batch))
        for offset, entry in enumerate(batch):
            self._index.entries[entry.id] = IndexEntry(
                chunk=name,
                offset=offset,
                kind=entry.kind,
                timestamp=entry.timestamp,
            )
            self._pending.pop(entry.id, None)
        await self._publish_index()
        record_event("persistence.chunks_written")
        logger.debug("Wrote %s/%s with %d entries", self.partition, name, len(batch))
        return name

    def _check_loaded(self) -> None:
        # Never publish over an index this instance has not read.
        if not self._loaded and (self.directory / INDEX_FILE).exists():
            raise StoreNotLoaded(str(self.directory / INDEX_FILE))

    async def _publish_index(self) -> None:
        self._check_loaded()
        payload = self._index.model_dump(mode="json")
        await asyncio.to_thread(atomic_write_json, self.directory / INDEX_FILE, payload)
        self._index_dirty = False
        self._loaded = True

    async def discard(self, entry_ids: Iterable[str]) -> None:
        """Forget entries.  Chunk bytes stay until ``compact``."""
        async with self._lock:
            for entry_id in entry_ids:
                self._pending.pop(entry_id, None)
                if self._index.entries.pop(entry_id, None) is not None:
                    self._index_dirty = True

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def fetch(self, entry_ids: Iterable[str]) -> dict[str, MemoryEntry]:
        """Page entries in, grouped by chunk.  Unreadable chunks are skipped."""
        async with self._lock:
            found: dict[str, MemoryEntry] = {}
            by_chunk: dict[str, list[tuple[str, int]]] = {}
            for entry_id in entry_ids:
                pending = self._pending.get(entry_id)
                if pending is not None:
                    found[entry_id] = pending
                    continue
                rec = self._index.entries.get(entry_id)
                if rec is not None:
                    by_chunk.setdefault(rec.chunk, []).append((entry_id, rec.offset))

            for name, wanted in by_chunk.items():
                try:
                    raw = await self._read_entries(name)
                except CorruptedChunk as exc:
                    await self._mark_corrupted(name, exc.reason)
                    continue
                for entry_id, offset in wanted:
                    entry = self._decode_entry(raw, offset, entry_id)
                    if entry is not None:
                        found[entry_id] = entry
            if self._index_dirty:
                await self._publish_index()
            return found

    async def _read_entries(self, name: str) -> list:
        info = self._index.chunks.get(name)
        expected = info.checksum if info is not None else None
        payload = await asyncio.to_thread(
            read_chunk,
            self.directory / name,
            expected,
            verify=self.config.verify_checksums,
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("entries"), list):
            raise CorruptedChunk(str(self.directory / name), "unexpected payload shape")
        return payload["entries"]

    def _decode_entry(self, raw: list, offset: int, entry_id: str) -> MemoryEntry | None:
        if offset >= len(raw):
            logger.warning("Offset %d out of range for entry %s", offset, entry_id)
            return None
        try:
            entry = MemoryEntry.model_validate(raw[offset])
        except ValidationError:
            logger.warning("Undecodable entry %s at offset %d", entry_id, offset)
            return None
        if entry.id != entry_id:
            logger.warning("Index points %s at a different entry", entry_id)
            return None
        return entry

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    async def compact(self) -> int:
        """Rewrite chunks whose live ratio fell below the configured minimum.

        Live entries move into fresh chunks; the index is published before
        the superseded files are deleted.  Returns the number of chunks
        retired.
        """
        async with self._lock:
            live = self.live_counts()
            sparse = [
                name
                for name, info in self._index.chunks.items()
                if info.count == 0
                or live.get(name, 0) / info.count < self.config.compaction_min_live_ratio
            ]
            if not sparse:
                return 0

            survivors: list[MemoryEntry] = []
            for name in sparse:
                ids = [(i, rec.offset) for i, rec in self._index.entries.items() if rec.chunk == name]
                if not ids:
                    continue
                try:
                    raw = await self._read_entries(name)
                except CorruptedChunk as exc:
                    await self._mark_corrupted(name, exc.reason)
                    continue
                for entry_id, offset in ids:
                    entry = self._decode_entry(raw, offset, entry_id)
                    if entry is not None:
                        survivors.append(entry)

            for name in sparse:
                for entry_id in [i for i, rec in self._index.entries.items() if rec.chunk == name]:
                    del self._index.entries[entry_id]
                self._index.chunks.pop(name, None)

            for start in range(0, len(survivors), self.config.chunk_size):
                await self._write_chunk(survivors[start:start + self.config.chunk_size])
            await self._publish_index()

            for name in sparse:
                await asyncio.to_thread((self.directory / name).unlink, missing_ok=True)
            record_event("persistence.chunks_compacted", len(sparse))
            logger.info(
                "Compacted %s: retired %d chunks, rewrote %d entries",
                self.partition,
                len(sparse),
                len(survivors),
            )
            return len(sparse)

