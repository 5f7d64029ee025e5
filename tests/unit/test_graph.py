"""Unit tests for the knowledge graph."""

from __future__ import annotations

import pytest

from hybridmem.config import GraphConfig
from hybridmem.graph import KnowledgeGraph
from hybridmem.graph.knowledge import normalize_node
from hybridmem.graph.knowledge import normalize_predicate
from hybridmem.models import RelationOutcome
from hybridmem.models import Triple


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _chain(graph: KnowledgeGraph) -> None:
    """user -> pizza -> italy -> europe, plus an unrelated island."""
    await graph.add_relation("user", "likes", "pizza")
    await graph.add_relation("pizza", "comes_from", "italy")
    await graph.add_relation("italy", "part_of", "europe")
    await graph.add_relation("cats", "chase", "mice")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalization:
    @pytest.mark.parametrize("name", ["I", "me", " My ", "myself"])
    def test_first_person_maps_to_user(self, name):
        assert normalize_node(name) == "user"

    def test_predicate(self):
        assert normalize_predicate("Works At") == "works_at"


# ---------------------------------------------------------------------------
# add_relation
# ---------------------------------------------------------------------------


class TestAddRelation:
    @pytest.mark.asyncio
    async def test_insert(self, clock):
        graph = KnowledgeGraph(clock=clock)
        result = await graph.add_relation("User", "likes", "Pizza", 0.6)
        assert result.outcome is RelationOutcome.inserted
        assert result.triple.key == ("user", "likes", "pizza")
        assert result.triple.created_at == clock.now

    @pytest.mark.asyncio
    async def test_duplicate_keeps_max_confidence(self):
        graph = KnowledgeGraph()
        await graph.add_relation("user", "likes", "pizza", 0.6)
        result = await graph.add_relation("user", "likes", "pizza", 0.9)

        assert result.outcome is RelationOutcome.reinforced
        assert graph.count() == 1
        assert graph.triples()[0].confidence == 0.9
        assert graph.triples()[0].observations == 2

    @pytest.mark.asyncio
    async def test_lower_confidence_does_not_reduce(self):
        graph = KnowledgeGraph()
        await graph.add_relation("user", "likes", "pizza", 0.9)
        await graph.add_relation("user", "likes", "pizza", 0.2)
        assert graph.triples()[0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_mean_rule(self):
        graph = KnowledgeGraph(GraphConfig(combine_rule="mean"))
        await graph.add_relation("user", "likes", "pizza", 0.6)
        await graph.add_relation("user", "likes", "pizza", 0.9)
        await graph.add_relation("user", "likes", "pizza", 0.3)
        assert graph.triples()[0].confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_default_confidence(self):
        result = await KnowledgeGraph().add_relation("user", "likes", "pizza")
        assert result.triple.confidence == 0.7

    @pytest.mark.asyncio
    async def test_blank_parts_rejected(self):
        with pytest.raises(ValueError):
            await KnowledgeGraph().add_relation("user", "  ", "pizza")

    def test_unknown_combine_rule(self):
        with pytest.raises(ValueError):
            KnowledgeGraph(GraphConfig(combine_rule="sum"))

    @pytest.mark.asyncio
    async def test_same_pair_different_predicates(self):
        graph = KnowledgeGraph()
        await graph.add_relation("user", "likes", "pizza")
        await graph.add_relation("user", "cooks", "pizza")
        assert graph.count() == 2


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


class TestTraversal:
    @pytest.mark.asyncio
    async def test_related_within_depth(self):
        graph = KnowledgeGraph()
        await _chain(graph)
        assert graph.related_concepts("user") == ["pizza", "italy"]
        assert graph.related_concepts("user", max_depth=3) == ["pizza", "italy", "europe"]

    @pytest.mark.asyncio
    async def test_traversal_is_undirected(self):
        graph = KnowledgeGraph()
        await _chain(graph)
        assert graph.related_concepts("europe", max_depth=1) == ["italy"]

    @pytest.mark.asyncio
    async def test_unknown_node(self):
        graph = KnowledgeGraph()
        await _chain(graph)
        assert graph.related_concepts("nobody") == []
        assert graph.related_concepts("user", max_depth=0) == []

    @pytest.mark.asyncio
    async def test_relations_of_strongest_first(self):
        graph = KnowledgeGraph()
        await graph.add_relation("user", "likes", "pizza", 0.4)
        await graph.add_relation("user", "lives_in", "paris", 0.9)
        assert [t.object for t in graph.relations_of("I")] == ["paris", "pizza"]


# ---------------------------------------------------------------------------
# Removal / restore / extraction
# ---------------------------------------------------------------------------


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_remove_concept(self):
        graph = KnowledgeGraph()
        await _chain(graph)
        assert await graph.remove_concept("pizza") == 2
        assert graph.count() == 2
        assert graph.related_concepts("user") == []
        assert graph.related_concepts("italy") == ["europe"]

    def test_restore(self):
        graph = KnowledgeGraph()
        restored = graph.restore(
            [
                Triple(subject="user", predicate="likes", object="pizza", confidence=0.5),
                Triple(subject="user", predicate="likes", object="pizza", confidence=0.8),
            ]
        )
        assert restored == 1
        assert graph.triples()[0].confidence == 0.8

    @pytest.mark.asyncio
    async def test_extract_relations(self):
        graph = KnowledgeGraph()
        results = await graph.extract_relations("I work at Acme. I live in Paris.")
        assert {r.triple.key for r in results} == {
            ("user", "works_at", "acme"),
            ("user", "lives_in", "paris"),
        }
        assert graph.related_concepts("acme") == ["user", "paris"]

    @pytest.mark.asyncio
    async def test_stats(self):
        graph = KnowledgeGraph()
        await _chain(graph)
        stats = graph.stats()
        assert stats["triples"] == 4
        assert stats["nodes"] == 6
        assert stats["predicates"]["likes"] == 1
