"""HybridMemory — the engine facade used by the conversation orchestrator.

Wires two vector-store partitions (episodic, semantic), the knowledge
graph, temporal decay and, when a data directory is given, on-disk
persistence.  Without an embedding backend the engine keeps recording
dialogue and answers ``recall`` with recent dialogue only.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta
from pathlib import Path
from time import perf_counter

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import MemoryConfig
from hybridmem.embedding import Embedder
from hybridmem.engine.decay import DecayScheduler
from hybridmem.engine.decay import TemporalDecay
from hybridmem.errors import EmbeddingError
from hybridmem.graph.knowledge import KnowledgeGraph
from hybridmem.graph.knowledge import normalize_node
from hybridmem.memory.episodic import EpisodicMemory
from hybridmem.memory.semantic import SemanticMemory
from hybridmem.models.common import utcnow
from hybridmem.models.concepts import ConceptCandidate
from hybridmem.models.episodes import Session
from hybridmem.models.episodes import Turn
from hybridmem.models.schemas import EXPORT_VERSION
from hybridmem.models.schemas import AddConceptResult
from hybridmem.models.schemas import CategoryDecayStats
from hybridmem.models.schemas import CleanupReport
from hybridmem.models.schemas import ConceptHit
from hybridmem.models.schemas import DecayReport
from hybridmem.models.schemas import DecayedConcept
from hybridmem.models.schemas import EpisodeHit
from hybridmem.models.schemas import ImportReport
from hybridmem.models.schemas import LoadReport
from hybridmem.models.schemas import MemoryContext
from hybridmem.models.schemas import MemoryExport
from hybridmem.models.schemas import MemoryStats
from hybridmem.models.schemas import RelationResult
from hybridmem.observability import record_latency
from hybridmem.persistence.chunk_store import ChunkStore
from hybridmem.persistence.manager import EPISODIC
from hybridmem.persistence.manager import SEMANTIC
from hybridmem.persistence.manager import PersistenceManager
from hybridmem.vector.store import VectorStore

logger = logging.getLogger(__name__)

_RELATED_LIMIT = 5


class HybridMemory:
    """Episodic + semantic memory with a knowledge graph and decay."""

    def __init__(
        self,
        embedder: Embedder,
        config: MemoryConfig | None = None,
        *,
        data_dir: Path | str | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self._embedder = embedder
        self._audit = audit
        self._clock = clock or utcnow

        self._persistence: PersistenceManager | None = None
        self._chunk_stores: dict[str, ChunkStore] = {}
        if data_dir is not None:
            self._persistence = PersistenceManager(
                data_dir, self.config.persistence, audit=audit
            )
            for partition in (EPISODIC, SEMANTIC):
                self._chunk_stores[partition] = self._persistence.open_chunk_store(partition)

        self.episodic_store = VectorStore(
            embedder.dimension,
            self.config.vector,
            cold_storage=self._chunk_stores.get(EPISODIC),
            name=EPISODIC,
        )
        self.semantic_store = VectorStore(
            embedder.dimension,
            self.config.vector,
            cold_storage=self._chunk_stores.get(SEMANTIC),
            name=SEMANTIC,
        )
        self.graph = KnowledgeGraph(self.config.graph, audit=audit, clock=self._clock)
        self.episodic = EpisodicMemory(
            self.episodic_store,
            embedder,
            self.config.episodic,
            audit=audit,
            clock=self._clock,
        )
        self.semantic = SemanticMemory(
            self.semantic_store,
            embedder,
            self.config.semantic,
            audit=audit,
            clock=self._clock,
        )
        self.decay = TemporalDecay(
            self.semantic,
            self.graph,
            self.config.decay,
            audit=audit,
            clock=self._clock,
        )
        self._scheduler: DecayScheduler | None = None
        self._save_lock = asyncio.Lock()
        self._open_lock = asyncio.Lock()
        self._opened = False
        self._mutations = 0
        self._load_report = LoadReport()

    @property
    def persistent(self) -> bool:
        return self._persistence is not None

    @property
    def load_report(self) -> LoadReport:
        return self._load_report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> LoadReport:
        """Load persisted state.  Damaged chunks are skipped and reported.

        Runs once.  Every other coroutine of a persistent engine opens it
        first, so a save never replaces state it has not read.
        """
        async with self._open_lock:
            if not self._opened:
                if self._persistence is not None:
                    self._load_report = await self._load()
                self._opened = True
            return self._load_report

    async def _ensure_open(self) -> None:
        if not self._opened:
            await self.open()

    async def _load(self) -> LoadReport:
        start = perf_counter()
        await self._persistence.ensure_layout()

        corrupted: list[str] = []
        for partition, chunk_store in self._chunk_stores.items():
            names = await chunk_store.load()
            corrupted.extend(f"{partition}/{name}" for name in names)
        self.episodic_store.attach_cold_index()
        self.semantic_store.attach_cold_index()

        sessions = await self._persistence.load_sessions()
        if sessions is not None:
            self.episodic.restore_state(sessions)
        concepts = await self._persistence.load_concepts()
        if concepts is not None:
            self.semantic.restore_state(concepts)
        self.graph.restore(await self._persistence.load_triples())
        corrupted.extend(self._persistence.corrupted_files)

        report = LoadReport(
            sessions=len(self.episodic.sessions()),
            concepts=self.semantic.count(),
            triples=self.graph.count(),
            entries=len(self.episodic_store) + len(self.semantic_store),
            corrupted_chunk_count=len(corrupted),
            corrupted_chunks=corrupted,
        )
        record_latency(operation="engine.open", duration_ms=(perf_counter() - start) * 1000)
        logger.info(
            "Loaded memory: %d sessions, %d concepts, %d triples, %d entries, %d corrupted chunks",
            report.sessions,
            report.concepts,
            report.triples,
            report.entries,
            report.corrupted_chunk_count,
        )
        return report

    async def save(self) -> None:
        """Incremental save: new entries become new chunks, indexes are rewritten."""
        if self._persistence is None:
            return
        await self._ensure_open()
        start = perf_counter()
        ok = False
        try:
            async with self._save_lock:
                await self._persistence.ensure_layout()
                await self.episodic_store.checkpoint()
                await self.semantic_store.checkpoint()
                for chunk_store in self._chunk_stores.values():
                    await chunk_store.flush()
                await self._persistence.save_sessions(self.episodic.export_state())
                await self._persistence.save_concepts(self.semantic.export_state())
                await self._persistence.save_triples(self.graph.triples())
                self._mutations = 0
            ok = True
        finally:
            record_latency(
                operation="engine.save",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    async def close(self) -> None:
        await self.stop_decay_scheduler()
        await self.save()

    async def __aenter__(self) -> HybridMemory:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _after_mutation(self) -> None:
        self._mutations += 1
        every = self.config.persistence.auto_save_every
        if self._persistence is not None and every > 0 and self._mutations >= every:
            await self.save()

    # ------------------------------------------------------------------
    # Recall
    # ------------------------------------------------------------------

    async def recall(self, query: str, episodes: int = 3, concepts: int = 5) -> MemoryContext:
        """Gather recent dialogue, similar episodes and related concepts for *query*."""
        await self._ensure_open()
        start = perf_counter()
        recent = self.episodic.recent_dialogue()
        episode_hits: list[EpisodeHit] = []
        concept_hits: list[ConceptHit] = []
        degraded = False
        try:
            episode_hits = await self.episodic.recall_similar(query, episodes)
            concept_hits = await self.semantic.query(query, concepts)
        except EmbeddingError as exc:
            logger.warning("Recall degraded to recent dialogue: %s", exc)
            degraded = True
            episode_hits = []
            concept_hits = []

        for hit in concept_hits:
            hit.related = self.graph.related_concepts(hit.name)[:_RELATED_LIMIT]

        scores = [h.score for h in episode_hits] + [h.score for h in concept_hits]
        elapsed_ms = (perf_counter() - start) * 1000
        record_latency(operation="engine.recall", duration_ms=elapsed_ms, ok=not degraded)
        return MemoryContext(
            recent_dialogue=recent,
            relevant_episodes=episode_hits,
            relevant_concepts=concept_hits,
            confidence_score=sum(scores) / len(scores) if scores else 0.0,
            retrieval_time=elapsed_ms,
            degraded=degraded,
        )

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def add_exchange(self, user: str, assistant: str) -> Turn:
        """Record an exchange; learn concepts and relations from *user* only.

        An embedding failure is re-raised after extraction has run; the
        turn is kept in its session either way.
        """
        await self._ensure_open()
        embed_error: EmbeddingError | None = None
        turn: Turn | None = None
        try:
            turn = await self.episodic.add_exchange(user, assistant)
        except EmbeddingError as exc:
            embed_error = exc

        await self.semantic.extract_from_text(user)
        await self.graph.extract_relations(user)
        await self._after_mutation()

        if embed_error is not None:
            raise embed_error
        return turn

    async def add_concept(self, candidate: ConceptCandidate) -> AddConceptResult:
        await self._ensure_open()
        try:
            return await self.semantic.add_concept(candidate)
        finally:
            await self._after_mutation()

    async def add_relation(
        self,
        subject: str,
        predicate: str,
        object: str,
        confidence: float | None = None,
    ) -> RelationResult:
        await self._ensure_open()
        result = await self.graph.add_relation(subject, predicate, object, confidence)
        await self._after_mutation()
        return result

    async def start_session(self, persona_name: str | None = None) -> Session:
        await self._ensure_open()
        session = await self.episodic.start_session(persona_name)
        await self._after_mutation()
        return session

    async def load_session(self, session_id: str) -> Session | None:
        """Resume an archived session.  Unknown ids yield ``None``."""
        await self._ensure_open()
        session = await self.episodic.load_session(session_id)
        if session is not None:
            await self._after_mutation()
        return session

    async def delete_session(self, session_id: str) -> bool:
        await self._ensure_open()
        deleted = await self.episodic.delete_session(session_id)
        if deleted:
            await self._after_mutation()
        return deleted

    async def find_session_dialogues(
        self,
        session_id: str,
        query: str | None = None,
        top_k: int = 5,
    ) -> list[str]:
        """One session's exchanges: the first *top_k* turns, or the closest to *query*."""
        await self._ensure_open()
        if query is None:
            return self.episodic.session_dialogues(session_id, top_k)
        hits = await self.episodic.recall_similar(query, top_k, session_id=session_id)
        return [f"Turn {hit.turn_index}: {hit.text}" for hit in hits]

    async def retry_pending(self) -> int:
        """Re-embed turns and concepts captured while embedding was failing."""
        await self._ensure_open()
        indexed = await self.episodic.retry_pending()
        indexed += await self.semantic.retry_pending()
        if indexed:
            await self._after_mutation()
        return indexed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_decay(self, now: datetime | None = None) -> DecayReport:
        await self._ensure_open()
        report = await self.decay.run(now)
        if report.pruned:
            await self._after_mutation()
        return report

    def decay_stats(self) -> dict[str, CategoryDecayStats]:
        return self.decay.decay_stats()

    async def concepts_with_decay(self, top_k: int = 10) -> list[DecayedConcept]:
        """Concepts ranked by their decayed confidence, without applying it."""
        await self._ensure_open()
        return self.decay.concepts_with_decay(top_k)

    async def cleanup_old_memories(self, days_old: float) -> CleanupReport:
        """Forget archived sessions and concepts untouched for *days_old* days.

        Triples go with a removed concept's name unless a remaining concept
        still carries it.
        """
        if days_old < 0:
            raise ValueError("days_old must be non-negative")
        await self._ensure_open()
        cutoff = self._clock() - timedelta(days=days_old)
        sessions, turns = await self.episodic.cleanup_older_than(cutoff)
        removed = await self.semantic.cleanup_older_than(cutoff)

        live_names = {normalize_node(c.name) for c in self.semantic.concepts()}
        triples = 0
        for name in {normalize_node(c.name) for c in removed} - live_names:
            triples += await self.graph.remove_concept(name)

        report = CleanupReport(
            sessions=sessions,
            turns=turns,
            concepts=len(removed),
            triples=triples,
        )
        if report.sessions or report.concepts:
            logger.info(
                "Cleanup older than %s: %d sessions, %d turns, %d concepts, %d triples",
                cutoff,
                report.sessions,
                report.turns,
                report.concepts,
                report.triples,
            )
            await emit_event(
                self._audit,
                AuditEventType.MEMORY_CLEANED,
                **report.model_dump(),
            )
            await self._after_mutation()
        return report

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def export_memory(self) -> str:
        """Sessions, concepts and triples as a versioned JSON document."""
        await self._ensure_open()
        snapshot = MemoryExport(
            export_timestamp=self._clock(),
            current_session_id=self.episodic.current_session.id,
            episodic_sessions=self.episodic.sessions(),
            concepts=self.semantic.concepts(),
            triples=self.graph.triples(),
        )
        return snapshot.model_dump_json(indent=2)

    async def import_memory(self, data: str | bytes) -> ImportReport:
        """Merge a snapshot produced by ``export_memory``.

        Known sessions and concepts are kept as they are.  Imported text is
        re-embedded; whatever the backend refuses stays pending.  Raises
        ``pydantic.ValidationError`` for a malformed document and
        ``ValueError`` for an unsupported version.
        """
        snapshot = MemoryExport.model_validate_json(data)
        if snapshot.version.split(".")[0] != EXPORT_VERSION.split(".")[0]:
            raise ValueError(f"Unsupported export version {snapshot.version!r}")
        await self._ensure_open()

        report = ImportReport(
            sessions=await self.episodic.import_sessions(snapshot.episodic_sessions),
            concepts=await self.semantic.import_concepts(snapshot.concepts),
            triples=self.graph.merge(snapshot.triples),
        )
        await self.episodic.retry_pending()
        await self.semantic.retry_pending()
        report.pending_embeddings = self.episodic.pending_count() + self.semantic.pending_count()

        logger.info(
            "Imported %d sessions, %d concepts, %d triples (%d pending)",
            report.sessions,
            report.concepts,
            report.triples,
            report.pending_embeddings,
        )
        await emit_event(self._audit, AuditEventType.MEMORY_IMPORTED, **report.model_dump())
        await self._after_mutation()
        return report

    def start_decay_scheduler(self, interval_seconds: float | None = None) -> DecayScheduler:
        if self._scheduler is None:
            self._scheduler = DecayScheduler(
                self.run_decay,
                interval_seconds or self.config.decay.interval_seconds,
            )
        self._scheduler.start()
        return self._scheduler

    async def stop_decay_scheduler(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()

    async def compact(self) -> int:
        """Save, then rewrite sparse chunks.  Returns the number of chunks retired."""
        if self._persistence is None:
            return 0
        await self.save()
        retired = 0
        for chunk_store in self._chunk_stores.values():
            retired += await chunk_store.compact()
        return retired

    def stats(self) -> MemoryStats:
        corrupted = sum(store.corrupted_chunk_count for store in self._chunk_stores.values())
        if self._persistence is not None:
            corrupted += len(self._persistence.corrupted_files)
        return MemoryStats(
            episodic_count=self.episodic.turn_count(),
            semantic_count=self.semantic.count(),
            triple_count=self.graph.count(),
            tier_occupancy={
                EPISODIC: self.episodic_store.tier_occupancy(),
                SEMANTIC: self.semantic_store.tier_occupancy(),
            },
            corrupted_chunk_count=corrupted,
            session_count=len(self.episodic.sessions()),
            pending_embeddings=self.episodic.pending_count() + self.semantic.pending_count(),
        )
