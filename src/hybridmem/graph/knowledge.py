"""In-memory knowledge graph of concept-name triples.

A directed multigraph keyed by ``(subject, predicate, object)``: adding
an existing triple combines confidences instead of duplicating it.
Nodes are normalized names and hold no concept data, so removing a
concept only needs ``remove_concept(name)``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from collections import deque
from collections.abc import Callable
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import GraphConfig
from hybridmem.graph.extraction import extract_relations
from hybridmem.models.common import normalize_name
from hybridmem.models.common import utcnow
from hybridmem.models.graph import Triple
from hybridmem.models.schemas import RelationOutcome
from hybridmem.models.schemas import RelationResult

logger = logging.getLogger(__name__)

_SELF_NAMES = {"i": "user", "me": "user", "myself": "user", "my": "user"}
_PREDICATE_RE = re.compile(r"[^a-z0-9]+")

TripleKey = tuple[str, str, str]


def normalize_node(name: str) -> str:
    """Normalize a node name; first-person pronouns map to ``user``."""
    normalized = normalize_name(name)
    return _SELF_NAMES.get(normalized, normalized)


def normalize_predicate(predicate: str) -> str:
    return _PREDICATE_RE.sub("_", predicate.strip().lower()).strip("_")


class KnowledgeGraph:
    """Triple store with confidence combination and bounded traversal."""

    def __init__(
        self,
        config: GraphConfig | None = None,
        *,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or GraphConfig()
        if self._config.combine_rule not in ("max", "mean"):
            raise ValueError(f"Unknown combine rule: {self._config.combine_rule}")
        self._audit = audit
        self._clock = clock or utcnow
        self._lock = asyncio.Lock()
        self._triples: dict[TripleKey, Triple] = {}
        self._adjacency: dict[str, set[TripleKey]] = {}

    def _combine(self, triple: Triple, confidence: float) -> float:
        if self._config.combine_rule == "mean":
            total = triple.confidence * triple.observations + confidence
            return total / (triple.observations + 1)
        return max(triple.confidence, confidence)

    def _index(self, triple: Triple) -> None:
        self._triples[triple.key] = triple
        self._adjacency.setdefault(triple.subject, set()).add(triple.key)
        self._adjacency.setdefault(triple.object, set()).add(triple.key)

    def _unindex(self, key: TripleKey) -> None:
        self._triples.pop(key, None)
        for node in (key[0], key[2]):
            keys = self._adjacency.get(node)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._adjacency[node]

    # -- write --

    async def add_relation(
        self,
        subject: str,
        predicate: str,
        object: str,
        confidence: float | None = None,
    ) -> RelationResult:
        """Insert a triple, or reinforce the identical one already stored."""
        s = normalize_node(subject)
        p = normalize_predicate(predicate)
        o = normalize_node(object)
        if not s or not p or not o:
            raise ValueError("subject, predicate and object must be non-empty")
        value = self._config.default_confidence if confidence is None else confidence
        value = max(0.0, min(1.0, float(value)))

        async with self._lock:
            now = self._clock()
            existing = self._triples.get((s, p, o))
            if existing is None:
                triple = Triple(
                    subject=s,
                    predicate=p,
                    object=o,
                    confidence=value,
                    created_at=now,
                    updated_at=now,
                )
                self._index(triple)
                outcome = RelationOutcome.inserted
            else:
                existing.confidence = self._combine(existing, value)
                existing.observations += 1
                existing.updated_at = now
                triple = existing
                outcome = RelationOutcome.reinforced

        await emit_event(
            self._audit,
            AuditEventType.RELATION_ADDED
            if outcome is RelationOutcome.inserted
            else AuditEventType.RELATION_REINFORCED,
            triple_id=triple.id,
            triple=str(triple),
            confidence=triple.confidence,
        )
        return RelationResult(triple=triple.model_copy(), outcome=outcome)

    async def extract_relations(self, text: str) -> list[RelationResult]:
        """Add relations found in a user utterance."""
        results: list[RelationResult] = []
        for subject, predicate, obj in extract_relations(
            text, max_items=self._config.max_relations_per_text
        ):
            results.append(await self.add_relation(subject, predicate, obj))
        return results

    async def remove_concept(self, name: str) -> int:
        """Drop every triple mentioning *name*.  Returns the number removed."""
        node = normalize_node(name)
        async with self._lock:
            keys = list(self._adjacency.get(node, ()))
            for key in keys:
                self._unindex(key)
        if keys:
            logger.debug("Removed %d triples referencing %r", len(keys), node)
        return len(keys)

    def restore(self, triples: Iterable[Triple]) -> int:
        self._triples.clear()
        self._adjacency.clear()
        self.merge(triples)
        return len(self._triples)

    def merge(self, triples: Iterable[Triple]) -> int:
        """Add unseen triples; a known key keeps the higher confidence.

        Returns how many new triples were added.
        """
        added = 0
        for triple in triples:
            existing = self._triples.get(triple.key)
            if existing is not None:
                existing.confidence = max(existing.confidence, triple.confidence)
                continue
            self._index(triple.model_copy())
            added += 1
        return added

    # -- read --

    def relations_of(self, name: str) -> list[Triple]:
        """Triples where *name* is subject or object, strongest first."""
        node = normalize_node(name)
        keys = self._adjacency.get(node, ())
        return sorted(
            (self._triples[k] for k in keys),
            key=lambda t: (-t.confidence, t.key),
        )

    def related_concepts(self, name: str, max_depth: int | None = None) -> list[str]:
        """Names reachable from *name* within ``max_depth`` hops (either direction)."""
        depth_limit = self._config.max_depth if max_depth is None else max_depth
        start = normalize_node(name)
        if depth_limit <= 0 or start not in self._adjacency:
            return []

        seen = {start}
        ordered: list[str] = []
        frontier = deque([(start, 0)])
        while frontier:
            node, depth = frontier.popleft()
            if depth >= depth_limit:
                continue
            for triple in self.relations_of(node):
                neighbour = triple.object if triple.subject == node else triple.subject
                if neighbour in seen:
                    continue
                seen.add(neighbour)
                ordered.append(neighbour)
                frontier.append((neighbour, depth + 1))
        return ordered

    def triples(self) -> list[Triple]:
        return sorted(self._triples.values(), key=lambda t: t.created_at)

    def count(self) -> int:
        return len(self._triples)

    def stats(self) -> dict[str, Any]:
        predicates = Counter(t.predicate for t in self._triples.values())
        return {
            "triples": len(self._triples),
            "nodes": len(self._adjacency),
            "predicates": dict(sorted(predicates.items())),
        }
