"""Full snapshots of small record lists (knowledge-graph triples).

Each save writes a new generation of chunk files, publishes a manifest
naming them, then deletes the previous generation.  A crash before the
manifest rename leaves the old generation in force.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from hybridmem.errors import CorruptedChunk
from hybridmem.persistence.chunks import CHUNK_SUFFIX
from hybridmem.persistence.chunks import atomic_write_bytes
from hybridmem.persistence.chunks import atomic_write_json
from hybridmem.persistence.chunks import chunk_checksum
from hybridmem.persistence.chunks import encode_chunk
from hybridmem.persistence.chunks import read_chunk
from hybridmem.persistence.chunks import remove_stale_temp_files

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


class SnapshotChunk(BaseModel):
    name: str
    checksum: str
    count: int = Field(ge=0)


class SnapshotManifest(BaseModel):
    version: int = 1
    generation: int = 0
    chunks: list[SnapshotChunk] = Field(default_factory=list)


class RecordSnapshot:
    """Chunked, checksummed snapshot of a flat list of JSON records."""

    def __init__(self, directory: Path | str, *, chunk_size: int = 1000, prefix: str = "records") -> None:
        self.directory = Path(directory)
        self.chunk_size = max(1, chunk_size)
        self.prefix = prefix

    def _read_manifest(self) -> SnapshotManifest | None:
        path = self.directory / MANIFEST_FILE
        if not path.exists():
            return None
        try:
            return SnapshotManifest.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError):
            logger.warning("Unreadable snapshot manifest %s", path)
            raise CorruptedChunk(str(path), "unreadable manifest") from None

    def save_sync(self, records: list[dict[str, Any]]) -> SnapshotManifest:
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            previous = self._read_manifest()
        except CorruptedChunk:
            previous = None
        generation = (previous.generation if previous else 0) + 1

        chunks: list[SnapshotChunk] = []
        for seq, start in enumerate(range(0, len(records), self.chunk_size), start=1):
            batch = records[start:start + self.chunk_size]
            name = f"{self.prefix}_g{generation:06d}_{seq:04d}{CHUNK_SUFFIX}"
            data = encode_chunk({"records": batch})
            atomic_write_bytes(self.directory / name, data)
            chunks.append(SnapshotChunk(name=name, checksum=chunk_checksum(data), count=len(batch)))

        manifest = SnapshotManifest(generation=generation, chunks=chunks)
        atomic_write_json(self.directory / MANIFEST_FILE, manifest.model_dump(mode="json"))

        keep = {c.name for c in chunks}
        for stale in self.directory.glob(f"{self.prefix}_g*{CHUNK_SUFFIX}"):
            if stale.name not in keep:
                stale.unlink(missing_ok=True)
        return manifest

    def load_sync(self) -> tuple[list[dict[str, Any]], list[str]]:
        """Return ``(records, corrupted_chunk_names)``."""
        remove_stale_temp_files(self.directory)
        try:
            manifest = self._read_manifest()
        except CorruptedChunk:
            return [], [MANIFEST_FILE]
        if manifest is None:
            return [], []

        records: list[dict[str, Any]] = []
        corrupted: list[str] = []
        for chunk in manifest.chunks:
            try:
                payload = read_chunk(self.directory / chunk.name, chunk.checksum)
            except CorruptedChunk as exc:
                logger.warning("Skipping corrupted snapshot chunk %s (%s)", chunk.name, exc.reason)
                corrupted.append(chunk.name)
                continue
            batch = payload.get("records") if isinstance(payload, dict) else None
            if not isinstance(batch, list):
                corrupted.append(chunk.name)
                continue
            records.extend(r for r in batch if isinstance(r, dict))
        return records, corrupted

    async def save(self, records: list[dict[str, Any]]) -> SnapshotManifest:
        return await asyncio.to_thread(self.save_sync, records)

    async def load(self) -> tuple[list[dict[str, Any]], list[str]]:
        return await asyncio.to_thread(self.load_sync)

