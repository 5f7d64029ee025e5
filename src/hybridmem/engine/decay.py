"""Temporal decay of concept confidence.

Confidence is recomputed from the value it had when last reinforced::

    target = max(0, reinforced_confidence - rate(category) * periods)
    confidence = min(confidence, target)

so a pass is idempotent for a given ``now`` and never raises confidence.
Concepts that reach 0, were barely used, and are past the grace period
are pruned together with their vector entry.  Graph triples naming a
pruned concept go too, unless a surviving concept (in another category)
still carries that name.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import datetime
from time import perf_counter

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import DecayConfig
from hybridmem.graph.knowledge import KnowledgeGraph
from hybridmem.graph.knowledge import normalize_node
from hybridmem.memory.semantic import SemanticMemory
from hybridmem.models.common import utcnow
from hybridmem.models.concepts import Concept
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.schemas import CategoryDecayStats
from hybridmem.models.schemas import DecayReport
from hybridmem.models.schemas import DecayedConcept
from hybridmem.observability import record_event
from hybridmem.observability import record_latency

logger = logging.getLogger(__name__)

_LOW_CONFIDENCE = 0.2
_VISIBLE_CONFIDENCE = 0.01


class TemporalDecay:
    """Ages semantic concepts and prunes the ones that faded out."""

    def __init__(
        self,
        semantic: SemanticMemory,
        graph: KnowledgeGraph | None = None,
        config: DecayConfig | None = None,
        *,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._semantic = semantic
        self._graph = graph
        self._config = config or DecayConfig()
        self._audit = audit
        self._clock = clock or utcnow

    def rate_for(self, category: ConceptCategory) -> float:
        return max(0.0, self._config.rates.get(category.value, self._config.rates.get("general", 0.0)))

    def decayed_confidence(self, concept: Concept, now: datetime) -> float:
        elapsed = (now - concept.last_reinforced_at).total_seconds()
        periods = max(0.0, elapsed / self._config.period_seconds)
        target = max(0.0, concept.reinforced_confidence - self.rate_for(concept.category) * periods)
        return min(concept.confidence, target)

    def concepts_with_decay(
        self,
        top_k: int = 10,
        now: datetime | None = None,
    ) -> list[DecayedConcept]:
        """Rank concepts by the confidence decay would give them at *now*.

        Nothing is written back.  Concepts at or below 0.01 are left out.
        """
        if top_k <= 0:
            return []
        now = now or self._clock()
        ranked: list[DecayedConcept] = []
        for concept in self._semantic.concepts():
            value = self.decayed_confidence(concept, now)
            if value > _VISIBLE_CONFIDENCE:
                ranked.append(DecayedConcept(concept=concept, effective_confidence=value))
        ranked.sort(key=lambda item: item.effective_confidence, reverse=True)
        return ranked[:top_k]

    def _prunable(self, concept: Concept, now: datetime) -> bool:
        if concept.confidence > 0.0:
            return False
        if concept.usage_count > self._config.prune_max_usage_count:
            return False
        age = (now - concept.last_reinforced_at).total_seconds()
        return age > self._config.grace_period_seconds

    async def run(self, now: datetime | None = None) -> DecayReport:
        """One decay pass over every concept."""
        start = perf_counter()
        ok = False
        try:
            report = await self._run(now or self._clock())
            ok = True
            return report
        finally:
            record_latency(
                operation="decay.run",
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )

    async def _run(self, now: datetime) -> DecayReport:
        updated = 0
        pruned: list[Concept] = []
        async with self._semantic.lock:
            for concept in self._semantic.concepts():
                value = self.decayed_confidence(concept, now)
                if value < concept.confidence:
                    concept.confidence = value
                    updated += 1
                if self._prunable(concept, now):
                    pruned.append(concept)
            for concept in pruned:
                await self._semantic.remove(concept.id)
            live_names = {normalize_node(c.name) for c in self._semantic.concepts()}
            for concept in pruned:
                triples = 0
                if self._graph is not None and normalize_node(concept.name) not in live_names:
                    triples = await self._graph.remove_concept(concept.name)
                logger.info(
                    "Pruned concept %r (%s), %d triples removed",
                    concept.name,
                    concept.category.value,
                    triples,
                )
                await emit_event(
                    self._audit,
                    AuditEventType.CONCEPT_PRUNED,
                    concept_id=concept.id,
                    name=concept.name,
                    category=concept.category.value,
                    triples_removed=triples,
                )

        record_event("decay.pruned", len(pruned))
        report = DecayReport(
            updated=updated,
            pruned=len(pruned),
            pruned_names=[c.name for c in pruned],
        )
        await emit_event(
            self._audit,
            AuditEventType.DECAY_PASS,
            updated=report.updated,
            pruned=report.pruned,
        )
        return report

    def decay_stats(self) -> dict[str, CategoryDecayStats]:
        """Per-category concept count, mean confidence and low-confidence count."""
        stats: dict[str, CategoryDecayStats] = {}
        for category in ConceptCategory:
            concepts = self._semantic.by_category(category)
            if not concepts:
                continue
            stats[category.value] = CategoryDecayStats(
                total=len(concepts),
                mean_confidence=sum(c.confidence for c in concepts) / len(concepts),
                low_confidence=sum(1 for c in concepts if c.confidence < _LOW_CONFIDENCE),
            )
        return stats


class DecayScheduler:
    """Runs a decay pass every *interval_seconds* on the current event loop."""

    def __init__(
        self,
        run_pass: Callable[[], Awaitable[DecayReport]],
        interval_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._run_pass = run_pass
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.passes = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="hybridmem-decay")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._run_pass()
            except Exception:
                logger.exception("Background decay pass failed")
            self.passes += 1
