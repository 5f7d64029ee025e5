"""Semantic memory: a deduplicated, self-correcting concept base.

``add_concept`` resolves every candidate against what is already known,
in this order:

1. same category and same normalized name;
2. same category and same polarity-stripped subject (``"I love pizza"``
   vs ``"I hate pizza"``);
3. same category and embedding cosine >= ``dedup_threshold`` (or >=
   ``contradiction_threshold`` for an opposite-polarity statement).

A match is merged (reinforced) unless the statements contradict, in
which case the newer statement replaces the older one and confidence
falls back to the baseline.  Anything else becomes a new concept.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import SemanticConfig
from hybridmem.embedding import Embedder
from hybridmem.embedding import embed_text
from hybridmem.errors import EmbeddingError
from hybridmem.errors import EmptyStore
from hybridmem.errors import UnknownConcept
from hybridmem.memory.extraction import analyze
from hybridmem.memory.extraction import extract_concepts
from hybridmem.memory.extraction import is_contradiction
from hybridmem.models.common import normalize_name
from hybridmem.models.common import utcnow
from hybridmem.models.concepts import Concept
from hybridmem.models.concepts import ConceptCandidate
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.concepts import Polarity
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.entries import SemanticKind
from hybridmem.models.schemas import AddConceptResult
from hybridmem.models.schemas import ConceptHit
from hybridmem.models.schemas import ConceptOutcome
from hybridmem.observability import record_event
from hybridmem.vector.store import EntryFilter
from hybridmem.vector.store import VectorStore

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SemanticMemory:
    """Concept registry over a semantic ``VectorStore`` partition."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        config: SemanticConfig | None = None,
        *,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or SemanticConfig()
        self._audit = audit
        self._clock = clock or utcnow
        self._lock = asyncio.Lock()
        self._concepts: dict[str, Concept] = {}
        self._by_name: dict[tuple[ConceptCategory, str], str] = {}
        self._by_entry: dict[str, str] = {}

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def config(self) -> SemanticConfig:
        return self._config

    @property
    def lock(self) -> asyncio.Lock:
        """Serializes concept mutations (shared with the decay pass)."""
        return self._lock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, concept_id: str) -> Concept | None:
        return self._concepts.get(concept_id)

    def find_by_name(self, name: str, category: ConceptCategory | str) -> Concept | None:
        key = (ConceptCategory.parse(category), normalize_name(name))
        concept_id = self._by_name.get(key)
        return self._concepts.get(concept_id) if concept_id else None

    def by_category(self, category: ConceptCategory | str) -> list[Concept]:
        cat = ConceptCategory.parse(category)
        return [c for c in self._concepts.values() if c.category is cat]

    def concepts(self) -> list[Concept]:
        return sorted(self._concepts.values(), key=lambda c: c.created_at)

    def count(self) -> int:
        return len(self._concepts)

    def pending_count(self) -> int:
        return sum(1 for c in self._concepts.values() if c.entry_id is None)

    def _find_by_subject(self, category: ConceptCategory, key: str) -> Concept | None:
        if not key:
            return None
        for concept in self._concepts.values():
            if concept.category is not category:
                continue
            if concept.name == key or analyze(concept.definition).key == key:
                return concept
        return None

    async def _find_similar(
        self,
        vector: list[float],
        category: ConceptCategory,
        definition: str,
    ) -> Concept | None:
        if len(self._store) == 0:
            return None
        try:
            hits = await self._store.search(vector, 3, EntryFilter.semantic(category))
        except EmptyStore:
            return None
        for hit in hits:
            concept = self._concepts.get(self._by_entry.get(hit.entry.id, ""))
            if concept is None:
                continue
            if hit.score >= self._config.dedup_threshold:
                return concept
            if hit.score >= self._config.contradiction_threshold and is_contradiction(
                concept.definition, definition
            ):
                return concept
        return None

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def _register(self, concept: Concept) -> None:
        self._concepts[concept.id] = concept
        self._by_name[(concept.category, concept.name)] = concept.id
        if concept.entry_id is not None:
            self._by_entry[concept.entry_id] = concept.id

    def _unregister(self, concept: Concept) -> None:
        self._concepts.pop(concept.id, None)
        key = (concept.category, concept.name)
        if self._by_name.get(key) == concept.id:
            del self._by_name[key]
        if concept.entry_id is not None:
            self._by_entry.pop(concept.entry_id, None)

    async def _replace_entry(self, concept: Concept, vector: list[float] | None) -> None:
        """Swap the concept's vector entry for one built from its current text."""
        if concept.entry_id is not None:
            self._by_entry.pop(concept.entry_id, None)
            await self._store.remove(concept.entry_id)
            concept.entry_id = None
        if vector is None:
            return
        entry = MemoryEntry(
            text=concept.definition,
            embedding=vector,
            kind=SemanticKind(category=concept.category),
            timestamp=self._clock(),
            metadata={"concept_id": concept.id, "name": concept.name},
        )
        await self._store.add(entry)
        concept.entry_id = entry.id
        self._by_entry[entry.id] = concept.id

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def add_concept(self, candidate: ConceptCandidate) -> AddConceptResult:
        """Create, merge or correct a concept from *candidate*.

        When embedding fails the concept is still recorded (exact-name
        deduplication only) and the embedding error is raised with
        ``record_id`` set to the concept id.
        """
        name = normalize_name(candidate.name)
        category = candidate.category
        statement = analyze(candidate.definition)

        async with self._lock:
            vector: list[float] | None = None
            embed_error: EmbeddingError | None = None
            try:
                vector = await embed_text(self._embedder, candidate.definition, self._store.cache)
            except EmbeddingError as exc:
                embed_error = exc

            existing = self._concepts.get(self._by_name.get((category, name), ""))
            if existing is None and statement.polarity is not Polarity.neutral:
                existing = self._find_by_subject(category, statement.key)
            if existing is None and vector is not None:
                existing = await self._find_similar(vector, category, candidate.definition)

            if existing is None:
                concept = await self._create(candidate, name, statement.polarity, vector)
                outcome = ConceptOutcome.created
            elif self._contradicts(existing, candidate.definition, statement.polarity):
                concept = await self._resolve_contradiction(
                    existing, candidate, name, statement.polarity, vector
                )
                outcome = ConceptOutcome.contradiction_resolved
            else:
                concept = await self._merge(existing, candidate, statement.polarity, vector)
                outcome = ConceptOutcome.merged

        await self._audit_outcome(concept, outcome)
        if embed_error is not None:
            logger.warning("Concept %s stored without embedding: %s", concept.id, embed_error)
            raise type(embed_error)(str(embed_error), record_id=concept.id) from embed_error
        return AddConceptResult(
            concept_id=concept.id,
            outcome=outcome,
            concept=concept.model_copy(),
        )

    @staticmethod
    def _contradicts(existing: Concept, definition: str, polarity: Polarity) -> bool:
        if is_contradiction(existing.definition, definition):
            return True
        return {existing.polarity, polarity} == {Polarity.positive, Polarity.negative}

    async def _create(
        self,
        candidate: ConceptCandidate,
        name: str,
        polarity: Polarity,
        vector: list[float] | None,
    ) -> Concept:
        now = self._clock()
        confidence = (
            candidate.confidence
            if candidate.confidence is not None
            else self._config.baseline_confidence
        )
        concept = Concept(
            name=name,
            definition=candidate.definition,
            category=candidate.category,
            confidence=confidence,
            reinforced_confidence=confidence,
            importance=_clamp(self._config.default_importance.get(candidate.category.value, 0.5)),
            source=candidate.source,
            polarity=polarity,
            created_at=now,
            last_reinforced_at=now,
            usage_count=1,
        )
        self._register(concept)
        await self._replace_entry(concept, vector)
        logger.debug("Created concept %s (%s)", concept.name, concept.category.value)
        return concept

    async def _merge(
        self,
        concept: Concept,
        candidate: ConceptCandidate,
        polarity: Polarity,
        vector: list[float] | None,
    ) -> Concept:
        confidence = _clamp(concept.confidence + self._config.reinforcement_step)
        concept.usage_count += 1
        concept.confidence = confidence
        concept.reinforced_confidence = confidence
        concept.last_reinforced_at = self._clock()
        if concept.polarity is Polarity.neutral:
            concept.polarity = polarity
        if len(candidate.definition) > len(concept.definition):
            concept.definition = candidate.definition
            await self._replace_entry(concept, vector)
        elif concept.entry_id is None and vector is not None:
            await self._replace_entry(concept, vector)
        return concept

    async def _resolve_contradiction(
        self,
        concept: Concept,
        candidate: ConceptCandidate,
        name: str,
        polarity: Polarity,
        vector: list[float] | None,
    ) -> Concept:
        old_definition = concept.definition
        key = (concept.category, concept.name)
        if self._by_name.get(key) == concept.id:
            del self._by_name[key]
        concept.name = name
        concept.definition = candidate.definition
        concept.polarity = polarity
        concept.confidence = self._config.baseline_confidence
        concept.reinforced_confidence = self._config.baseline_confidence
        concept.last_reinforced_at = self._clock()
        concept.usage_count += 1
        self._by_name[(concept.category, concept.name)] = concept.id
        await self._replace_entry(concept, vector)
        record_event("semantic.contradictions")
        logger.info(
            "Contradiction on %r: %r replaced by %r",
            concept.name,
            old_definition,
            concept.definition,
        )
        concept.metadata["previous_definition"] = old_definition
        return concept

    async def _audit_outcome(self, concept: Concept, outcome: ConceptOutcome) -> None:
        event_type = {
            ConceptOutcome.created: AuditEventType.CONCEPT_CREATED,
            ConceptOutcome.merged: AuditEventType.CONCEPT_MERGED,
            ConceptOutcome.contradiction_resolved: AuditEventType.CONTRADICTION_RESOLVED,
        }[outcome]
        await emit_event(
            self._audit,
            event_type,
            concept_id=concept.id,
            name=concept.name,
            category=concept.category.value,
            confidence=concept.confidence,
            usage_count=concept.usage_count,
        )

    async def extract_from_text(self, text: str) -> list[AddConceptResult]:
        """Run the extraction heuristic over a user utterance.

        Candidates whose embedding fails are kept as pending concepts and
        omitted from the returned results.
        """
        results: list[AddConceptResult] = []
        candidates = extract_concepts(
            text,
            max_items=self._config.max_extracted_per_text,
            max_chars=self._config.max_extraction_chars,
        )
        for candidate in candidates:
            try:
                results.append(await self.add_concept(candidate))
            except EmbeddingError as exc:
                logger.info("Extracted concept %s pending embedding", exc.record_id)
        return results

    # ------------------------------------------------------------------
    # Use
    # ------------------------------------------------------------------

    async def query(
        self,
        question: str,
        top_k: int = 5,
        category: ConceptCategory | None = None,
    ) -> list[ConceptHit]:
        """Rank concepts against *question*.  Empty memory yields ``[]``."""
        if top_k <= 0 or len(self._store) == 0:
            return []
        vector = await embed_text(self._embedder, question, self._store.cache)
        try:
            hits = await self._store.search(vector, top_k, EntryFilter.semantic(category))
        except EmptyStore:
            return []
        results: list[ConceptHit] = []
        for hit in hits:
            concept = self._concepts.get(self._by_entry.get(hit.entry.id, ""))
            if concept is None:
                continue
            results.append(
                ConceptHit(
                    concept_id=concept.id,
                    name=concept.name,
                    definition=concept.definition,
                    category=concept.category,
                    confidence=concept.confidence,
                    importance=concept.importance,
                    score=hit.score,
                )
            )
        return results

    async def reinforce(self, concept_id: str) -> Concept:
        """Record a successful recall-and-use of *concept_id*."""
        async with self._lock:
            concept = self._concepts.get(concept_id)
            if concept is None:
                raise UnknownConcept(concept_id)
            confidence = _clamp(concept.confidence + self._config.reinforcement_step)
            concept.usage_count += 1
            concept.confidence = confidence
            concept.reinforced_confidence = confidence
            concept.importance = _clamp(concept.importance + self._config.importance_step)
            concept.last_reinforced_at = self._clock()
            return concept

    async def remove(self, concept_id: str) -> Concept | None:
        """Delete a concept and its vector entry.  Unknown ids return None."""
        concept = self._concepts.get(concept_id)
        if concept is None:
            return None
        self._unregister(concept)
        if concept.entry_id is not None:
            await self._store.remove(concept.entry_id)
        return concept

    async def cleanup_older_than(self, cutoff: datetime) -> list[Concept]:
        """Remove concepts last reinforced at or before *cutoff*."""
        async with self._lock:
            stale = [c for c in self._concepts.values() if c.last_reinforced_at <= cutoff]
            for concept in stale:
                await self.remove(concept.id)
        return stale

    async def import_concepts(self, concepts: list[Concept]) -> int:
        """Merge concepts from a snapshot.

        A concept whose id or (category, name) is already known is skipped.
        Imported concepts start pending and are embedded by ``retry_pending``.
        """
        added = 0
        async with self._lock:
            for concept in concepts:
                if concept.id in self._concepts or (concept.category, concept.name) in self._by_name:
                    continue
                self._register(concept.model_copy(update={"entry_id": None}, deep=True))
                added += 1
        return added

    async def retry_pending(self) -> int:
        """Embed concepts recorded while the backend was failing."""
        indexed = 0
        async with self._lock:
            for concept in list(self._concepts.values()):
                if concept.entry_id is not None:
                    continue
                try:
                    vector = await embed_text(self._embedder, concept.definition, self._store.cache)
                except EmbeddingError as exc:
                    logger.info("Pending concept retry stopped: %s", exc)
                    break
                await self._replace_entry(concept, vector)
                indexed += 1
        return indexed

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        return {
            "version": 1,
            "concepts": [c.model_dump(mode="json") for c in self.concepts()],
        }

    def restore_state(self, state: dict[str, Any]) -> int:
        """Load concepts from *state*; entries lost from the store become pending."""
        self._concepts.clear()
        self._by_name.clear()
        self._by_entry.clear()
        for raw in state.get("concepts", []):
            try:
                concept = Concept.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed concept record")
                continue
            if concept.entry_id is not None and concept.entry_id not in self._store:
                concept.entry_id = None
            self._register(concept)
        return len(self._concepts)
