"""Unit tests for episodic memory (sessions, turns, similarity recall)."""

from __future__ import annotations

from datetime import timedelta

import pytest

from hybridmem.config import EpisodicConfig
from hybridmem.errors import EmbeddingFailed
from hybridmem.memory import EpisodicMemory
from hybridmem.vector import VectorStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_memory(embedder, clock, **config) -> EpisodicMemory:
    return EpisodicMemory(
        VectorStore(embedder.dimension),
        embedder,
        EpisodicConfig(**config),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class TestAddExchange:
    @pytest.mark.asyncio
    async def test_turn_is_indexed(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        turn = await memory.add_exchange("I love pizza", "Noted!")

        assert turn.index == 0
        assert turn.entry_id is not None
        assert turn.entry_id in memory.store
        assert memory.turn_count() == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_turn(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        embedder.failing = True

        with pytest.raises(EmbeddingFailed) as exc_info:
            await memory.add_exchange("hello", "hi")

        session = memory.current_session
        assert exc_info.value.record_id == f"{session.id}:0"
        assert len(session.turns) == 1
        assert session.turns[0].entry_id is None
        assert memory.pending_count() == 1
        assert len(memory.store) == 0

    @pytest.mark.asyncio
    async def test_retry_pending_indexes_later(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        embedder.failing = True
        with pytest.raises(EmbeddingFailed):
            await memory.add_exchange("hello", "hi")

        embedder.failing = False
        assert await memory.retry_pending() == 1
        assert memory.pending_count() == 0
        assert len(memory.store) == 1

    @pytest.mark.asyncio
    async def test_turns_are_time_ordered(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        first = await memory.add_exchange("a", "b")
        second = await memory.add_exchange("c", "d")
        assert second.timestamp > first.timestamp


# ---------------------------------------------------------------------------
# Recall
# ---------------------------------------------------------------------------


class TestRecallSimilar:
    @pytest.mark.asyncio
    async def test_empty_memory_returns_empty_list(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        assert await memory.recall_similar("anything") == []
        assert embedder.calls == 0

    @pytest.mark.asyncio
    async def test_most_similar_first(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("My favourite food is pizza", "Pizza is great")
        await memory.add_exchange("The weather is rainy today", "Take an umbrella")

        hits = await memory.recall_similar("pizza food", top_k=2)

        assert len(hits) == 2
        assert hits[0].turn_index == 0
        assert hits[0].score >= hits[1].score
        assert hits[0].text.startswith("[Relevance: ")
        assert hits[0].session_id == memory.current_session.id

    @pytest.mark.asyncio
    async def test_recall_spans_sessions(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("I adopted a cat named Miso", "Lovely")
        first_session = memory.current_session.id
        await memory.start_session()

        hits = await memory.recall_similar("cat named Miso", top_k=1)
        assert hits[0].session_id == first_session


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_snippet_format(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        snippet = memory.format_snippet("User: hi\nAssistant: hello", 0.876)
        assert snippet == "[Relevance: 88%] User: hi | Assistant: hello"

    def test_snippet_truncated(self, embedder, clock):
        memory = _make_memory(embedder, clock, snippet_max_chars=10)
        snippet = memory.format_snippet("User: " + "x" * 50, 1.0)
        assert snippet.endswith("...")
        assert len(snippet.split("] ", 1)[1]) == 10

    @pytest.mark.asyncio
    async def test_recent_dialogue_last_turns(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        for i in range(4):
            await memory.add_exchange(f"u{i}", f"a{i}")

        block = memory.recent_dialogue(max_turns=2)
        assert block == "User: u2\nAssistant: a2\nUser: u3\nAssistant: a3"

    @pytest.mark.asyncio
    async def test_recent_dialogue_drops_oldest_when_too_long(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("old " * 10, "reply")
        await memory.add_exchange("new", "reply")

        block = memory.recent_dialogue(max_turns=5, max_chars=30)
        assert block == "User: new\nAssistant: reply"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    @pytest.mark.asyncio
    async def test_start_session_switches_current(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        first = memory.current_session
        second = await memory.start_session("tutor")
        assert memory.current_session is second
        assert second.persona_name == "tutor"
        assert memory.get_session(first.id) is first

    @pytest.mark.asyncio
    async def test_session_cap_drops_oldest_archived(self, embedder, clock):
        memory = _make_memory(embedder, clock, max_sessions=2)
        first = memory.current_session
        await memory.add_exchange("first session", "ok")
        entry_id = first.turns[0].entry_id

        clock.advance(minutes=1)
        await memory.start_session()
        clock.advance(minutes=1)
        await memory.start_session()

        assert len(memory.sessions()) == 2
        assert memory.get_session(first.id) is None
        assert entry_id not in memory.store

    @pytest.mark.asyncio
    async def test_load_session_resumes_archived(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("I love pizza", "Noted")
        first = memory.current_session
        second = await memory.start_session()

        assert await memory.load_session(first.id) is first
        assert memory.current_session is first
        assert memory.get_session(second.id) is second
        assert "I love pizza" in memory.recent_dialogue()
        assert await memory.load_session("ses_missing") is None

    @pytest.mark.asyncio
    async def test_delete_archived_session_removes_entries(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("I love pizza", "Noted")
        first = memory.current_session
        entry_id = first.turns[0].entry_id
        await memory.start_session()

        assert await memory.delete_session(first.id) is True
        assert memory.get_session(first.id) is None
        assert entry_id not in memory.store
        assert await memory.delete_session(first.id) is False

    @pytest.mark.asyncio
    async def test_delete_current_session_opens_fresh_one(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.start_session("tutor")
        await memory.add_exchange("hello", "hi")
        current = memory.current_session

        assert await memory.delete_session(current.id) is True
        assert memory.current_session.id != current.id
        assert memory.current_session.persona_name == "tutor"
        assert memory.current_session.turns == []
        assert memory.recent_dialogue() == ""

    @pytest.mark.asyncio
    async def test_cleanup_drops_idle_archived_sessions(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("old news", "ok")
        old = memory.current_session
        clock.advance(days=10)
        await memory.start_session()
        await memory.add_exchange("recent news", "ok")
        recent = memory.current_session
        clock.advance(days=10)
        await memory.start_session()

        sessions, turns = await memory.cleanup_older_than(clock.now - timedelta(days=15))

        assert (sessions, turns) == (1, 1)
        assert memory.get_session(old.id) is None
        assert memory.get_session(recent.id) is recent
        assert len(memory.store) == 1

    @pytest.mark.asyncio
    async def test_cleanup_keeps_current_session(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("hello", "hi")
        clock.advance(days=30)

        assert await memory.cleanup_older_than(clock.now) == (0, 0)
        assert memory.turn_count() == 1


# ---------------------------------------------------------------------------
# Per-session lookup
# ---------------------------------------------------------------------------


class TestSessionDialogues:
    @pytest.mark.asyncio
    async def test_turns_in_order(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        for i in range(3):
            await memory.add_exchange(f"u{i}", f"a{i}")
        session_id = memory.current_session.id

        assert memory.session_dialogues(session_id) == [
            "Turn 0: User: u0 | Assistant: a0",
            "Turn 1: User: u1 | Assistant: a1",
            "Turn 2: User: u2 | Assistant: a2",
        ]
        assert len(memory.session_dialogues(session_id, limit=2)) == 2
        assert memory.session_dialogues("ses_missing") == []

    @pytest.mark.asyncio
    async def test_recall_restricted_to_session(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("I adopted a cat named Miso", "Lovely")
        first = memory.current_session.id
        await memory.start_session()
        await memory.add_exchange("I adopted a cat named Miso too", "Lovely")

        hits = await memory.recall_similar("cat named Miso", top_k=5, session_id=first)

        assert [hit.session_id for hit in hits] == [first]


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class TestState:
    @pytest.mark.asyncio
    async def test_round_trip(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("hello", "hi")
        state = memory.export_state()

        restored = EpisodicMemory(memory.store, embedder, clock=clock)
        assert restored.restore_state(state) == 1
        assert restored.current_session.id == memory.current_session.id
        assert restored.pending_count() == 0

    @pytest.mark.asyncio
    async def test_missing_entries_become_pending(self, embedder, clock):
        memory = _make_memory(embedder, clock)
        await memory.add_exchange("hello", "hi")
        state = memory.export_state()

        restored = _make_memory(embedder, clock)
        restored.restore_state(state)
        assert restored.pending_count() == 1

    @pytest.mark.asyncio
    async def test_import_sessions_skips_known_and_reembeds(self, embedder, clock):
        source = _make_memory(embedder, clock)
        await source.add_exchange("I love pizza", "Noted")
        sessions = source.sessions()

        memory = _make_memory(embedder, clock)
        assert await memory.import_sessions(sessions) == 1
        assert await memory.import_sessions(sessions) == 0
        assert memory.pending_count() == 1
        assert sessions[0].turns[0].entry_id is not None

        assert await memory.retry_pending() == 1
        hits = await memory.recall_similar("pizza", top_k=1)
        assert hits[0].session_id == sessions[0].id
