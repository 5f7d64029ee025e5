"""Data-directory layout and whole-engine state files.

::

    <root>/.gitignore
    <root>/episodic/sessions.json     session + turn index
    <root>/episodic/vectors/          ChunkStore for dialogue entries
    <root>/semantic/concepts.json     concept index
    <root>/semantic/vectors/          ChunkStore for concept entries
    <root>/graph/                     RecordSnapshot of triples
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import PersistenceConfig
from hybridmem.models.graph import Triple
from hybridmem.observability import record_event
from hybridmem.persistence.chunk_store import ChunkStore
from hybridmem.persistence.chunks import atomic_write_json
from hybridmem.persistence.snapshot import RecordSnapshot

logger = logging.getLogger(__name__)

EPISODIC = "episodic"
SEMANTIC = "semantic"
GRAPH = "graph"
PARTITIONS = (EPISODIC, SEMANTIC)

SESSIONS_FILE = "sessions.json"
CONCEPTS_FILE = "concepts.json"


class PersistenceManager:
    """Owns the on-disk layout under one root directory."""

    def __init__(
        self,
        root: Path | str,
        config: PersistenceConfig | None = None,
        *,
        audit: AuditLogger | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or PersistenceConfig()
        self._audit = audit
        self._corrupted: list[str] = []
        self._snapshot = RecordSnapshot(
            self.root / GRAPH,
            chunk_size=self.config.chunk_size,
            prefix="triples",
        )

    @property
    def corrupted_files(self) -> list[str]:
        """Index and snapshot files skipped at load (entry chunks excluded)."""
        return list(self._corrupted)

    async def ensure_layout(self) -> None:
        await asyncio.to_thread(self._ensure_layout)

    def _ensure_layout(self) -> None:
        for sub in (EPISODIC, SEMANTIC, GRAPH):
            (self.root / sub).mkdir(parents=True, exist_ok=True)
        gitignore = self.root / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("*\n", encoding="utf-8")

    def open_chunk_store(self, partition: str) -> ChunkStore:
        if partition not in PARTITIONS:
            raise ValueError(f"Unknown partition: {partition}")
        return ChunkStore(
            self.root / partition / "vectors",
            self.config,
            audit=self._audit,
            partition=partition,
        )

    # ------------------------------------------------------------------
    # JSON state files
    # ------------------------------------------------------------------

    async def save_sessions(self, state: dict[str, Any]) -> None:
        await asyncio.to_thread(atomic_write_json, self.root / EPISODIC / SESSIONS_FILE, state)

    async def load_sessions(self) -> dict[str, Any] | None:
        return await self._load_json(self.root / EPISODIC / SESSIONS_FILE)

    async def save_concepts(self, state: dict[str, Any]) -> None:
        await asyncio.to_thread(atomic_write_json, self.root / SEMANTIC / CONCEPTS_FILE, state)

    async def load_concepts(self) -> dict[str, Any] | None:
        return await self._load_json(self.root / SEMANTIC / CONCEPTS_FILE)

    async def _load_json(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
            data = json.loads(raw)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            await self._report(path, f"unreadable: {exc}")
            return None
        if not isinstance(data, dict):
            await self._report(path, "unexpected document shape")
            return None
        return data

    # ------------------------------------------------------------------
    # Graph snapshot
    # ------------------------------------------------------------------

    async def save_triples(self, triples: list[Triple]) -> None:
        await self._snapshot.save([t.model_dump(mode="json") for t in triples])

    async def load_triples(self) -> list[Triple]:
        records, corrupted = await self._snapshot.load()
        for name in corrupted:
            await self._report(self.root / GRAPH / name, "corrupted snapshot chunk")
        triples: list[Triple] = []
        for record in records:
            try:
                triples.append(Triple.model_validate(record))
            except ValidationError:
                logger.warning("Skipping malformed triple record %s", record.get("id"))
        return triples

    async def _report(self, path: Path, reason: str) -> None:
        name = str(path.relative_to(self.root)) if path.is_relative_to(self.root) else str(path)
        self._corrupted.append(name)
        record_event("persistence.corrupted_chunks")
        logger.warning("Skipping %s (%s)", name, reason)
        await emit_event(
            self._audit,
            AuditEventType.CHUNK_CORRUPTED,
            partition=path.parent.name,
            chunk=name,
            reason=reason,
        )
