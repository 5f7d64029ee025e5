"""Unit tests for pydantic models and their helpers."""

from __future__ import annotations

from datetime import datetime
from datetime import timezone

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError

from hybridmem.models import ConceptCandidate
from hybridmem.models import ConceptCategory
from hybridmem.models import ConceptHit
from hybridmem.models import EpisodeHit
from hybridmem.models import EpisodicKind
from hybridmem.models import MemoryContext
from hybridmem.models import MemoryEntry
from hybridmem.models import SemanticKind
from hybridmem.models import Session
from hybridmem.models import TierOccupancy
from hybridmem.models import Triple
from hybridmem.models.common import new_id
from hybridmem.models.common import normalize_name
from hybridmem.models.entries import EntryKind

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_new_id_prefix(self):
        value = new_id("ent")
        assert value.startswith("ent_")
        assert len(value) == len("ent_") + 32

    def test_normalize_name(self):
        assert normalize_name("  Green   Tea ") == "green tea"


# ---------------------------------------------------------------------------
# ConceptCategory / ConceptCandidate
# ---------------------------------------------------------------------------


class TestConceptCategory:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("fact", ConceptCategory.fact),
            ("Preferences", ConceptCategory.preference),
            ("RULES", ConceptCategory.rule),
            ("nonsense", ConceptCategory.general),
            (None, ConceptCategory.general),
        ],
    )
    def test_parse(self, raw, expected):
        assert ConceptCategory.parse(raw) is expected


class TestConceptCandidate:
    def test_strips_text(self):
        cand = ConceptCandidate(name=" pizza ", definition=" User loves pizza ")
        assert cand.name == "pizza"
        assert cand.definition == "User loves pizza"

    def test_blank_definition_rejected(self):
        with pytest.raises(ValidationError):
            ConceptCandidate(name="pizza", definition="   ")

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            ConceptCandidate(name="pizza", definition="x", confidence=1.5)


# ---------------------------------------------------------------------------
# MemoryEntry
# ---------------------------------------------------------------------------


class TestMemoryEntry:
    def test_kind_discriminator_round_trips(self):
        entry = MemoryEntry(
            text="User: hi",
            embedding=[1.0, 0.0],
            kind=EpisodicKind(session_id="ses_1", turn_index=0),
        )
        restored = MemoryEntry.model_validate(entry.model_dump(mode="json"))
        assert isinstance(restored.kind, EpisodicKind)
        assert restored.kind.session_id == "ses_1"

    def test_semantic_kind_from_raw(self):
        kind = TypeAdapter(EntryKind).validate_python({"kind": "semantic", "category": "rule"})
        assert isinstance(kind, SemanticKind)
        assert kind.category is ConceptCategory.rule

    def test_entry_is_frozen(self):
        entry = MemoryEntry(text="x", embedding=[1.0], kind=SemanticKind(category="fact"))
        with pytest.raises(ValidationError):
            entry.text = "y"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    def test_turns_keep_strict_time_order(self):
        session = Session(created_at=T0, last_activity=T0)
        first = session.append_turn("a", "b", T0)
        second = session.append_turn("c", "d", T0)
        assert [t.index for t in session.turns] == [0, 1]
        assert second.timestamp > first.timestamp

    def test_last_turns(self):
        session = Session()
        for i in range(4):
            session.append_turn(f"u{i}", f"a{i}", T0)
        assert [t.user for t in session.last_turns(2)] == ["u2", "u3"]
        assert session.last_turns(0) == []

    def test_pending_turns(self):
        session = Session()
        turn = session.append_turn("u", "a", T0)
        assert session.pending_turns() == [turn]
        turn.entry_id = "ent_1"
        assert session.pending_turns() == []


# ---------------------------------------------------------------------------
# Triple
# ---------------------------------------------------------------------------


class TestTriple:
    def test_key_and_str(self):
        triple = Triple(subject="user", predicate="likes", object="pizza")
        assert triple.key == ("user", "likes", "pizza")
        assert str(triple) == "user --likes--> pizza"
        assert triple.involves("pizza")
        assert not triple.involves("pasta")


# ---------------------------------------------------------------------------
# MemoryContext
# ---------------------------------------------------------------------------


def _make_concept_hit(related: list[str] | None = None) -> ConceptHit:
    return ConceptHit(
        concept_id="con_1",
        name="pizza",
        definition="User loves pizza",
        category=ConceptCategory.preference,
        confidence=0.6,
        importance=0.6,
        score=0.9,
        related=related or [],
    )


class TestMemoryContext:
    def test_empty_context_renders_empty(self):
        assert MemoryContext().format_for_prompt() == ""

    def test_sections_in_order(self):
        ctx = MemoryContext(
            recent_dialogue="User: hi\nAssistant: hello",
            relevant_episodes=[
                EpisodeHit(
                    text="[Relevance: 80%] User: pizza?",
                    score=0.8,
                    session_id="ses_1",
                    turn_index=0,
                    entry_id="ent_1",
                )
            ],
            relevant_concepts=[_make_concept_hit(["user"])],
        )
        prompt = ctx.format_for_prompt()
        assert prompt.index("=== Relevant Knowledge ===") < prompt.index(
            "=== Relevant Past Dialogues ==="
        )
        assert prompt.index("=== Relevant Past Dialogues ===") < prompt.index(
            "=== Current Dialogue ==="
        )
        assert "- pizza (confidence: 0.60): User loves pizza [related: user]" in prompt
        assert "Episode 1: [Relevance: 80%] User: pizza?" in prompt


class TestTierOccupancy:
    def test_total(self):
        assert TierOccupancy(hot=1, warm=2, cold=3).total == 6
