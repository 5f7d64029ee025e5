"""MCP interface contract tests.

All tests use ``fastmcp.Client`` to exercise the full MCP protocol
(serialization, validation) against an in-memory engine with a
deterministic hash embedder.
"""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from hybridmem.embedding import NoopEmbedder


def _parse(result) -> dict:
    """Extract the JSON payload from a CallToolResult."""
    return json.loads(result.content[0].text)


@pytest.fixture()
async def noop_client():
    """Client for a server whose embedding backend is unavailable."""
    from hybridmem.server import configure
    from hybridmem.server import mcp
    from hybridmem.server import shutdown

    await configure(NoopEmbedder(64))

    async with Client(mcp) as client:
        yield client

    await shutdown()


# -----------------------------------------------------------------------
# add_exchange
# -----------------------------------------------------------------------


class TestAddExchange:
    """Contract tests for the add_exchange tool."""

    async def test_accepts_valid_exchange(self, mcp_client):
        result = await mcp_client.call_tool(
            "add_exchange", {"user": "I love pizza", "assistant": "Noted!"}
        )
        data = _parse(result)
        assert data["status"] == "ok"
        assert data["turn_index"] == 0
        assert data["session_id"].startswith("ses_")

    async def test_turn_index_increments(self, mcp_client):
        await mcp_client.call_tool("add_exchange", {"user": "hello"})
        data = _parse(await mcp_client.call_tool("add_exchange", {"user": "again"}))
        assert data["turn_index"] == 1

    async def test_rejects_empty_user(self, mcp_client):
        data = _parse(await mcp_client.call_tool("add_exchange", {"user": ""}))
        assert data["status"] == "rejected"
        assert data["error_code"] == "validation_error"

    async def test_rejects_missing_user(self, mcp_client):
        with pytest.raises(Exception):
            await mcp_client.call_tool("add_exchange", {})

    async def test_embedding_unavailable_still_records(self, noop_client):
        data = _parse(await noop_client.call_tool("add_exchange", {"user": "hello"}))
        assert data["status"] == "stored_without_embedding"
        assert data["error_code"] == "EmbeddingUnavailable"
        assert data["turn_index"] == 0

        stats = _parse(await noop_client.call_tool("memory_stats", {}))
        assert stats["episodic_count"] == 1
        assert stats["pending_embeddings"] == 1


# -----------------------------------------------------------------------
# recall_memory
# -----------------------------------------------------------------------


class TestRecallMemory:
    """Contract tests for the recall_memory tool."""

    async def test_empty_memory(self, mcp_client):
        data = _parse(await mcp_client.call_tool("recall_memory", {"query": "pizza"}))
        assert data["context"]["relevant_episodes"] == []
        assert data["context"]["relevant_concepts"] == []
        assert data["context"]["confidence_score"] == 0.0
        assert data["prompt"] == ""

    async def test_returns_episodes_and_concepts(self, mcp_client):
        await mcp_client.call_tool(
            "add_exchange", {"user": "I love pizza", "assistant": "Pizza is great"}
        )
        data = _parse(await mcp_client.call_tool("recall_memory", {"query": "pizza"}))

        context = data["context"]
        assert len(context["relevant_episodes"]) == 1
        assert context["relevant_concepts"][0]["name"] == "pizza"
        assert "user" in context["relevant_concepts"][0]["related"]
        assert "=== Relevant Knowledge ===" in data["prompt"]
        assert "=== Current Dialogue ===" in data["prompt"]

    async def test_recent_dialogue_without_embeddings(self, noop_client):
        await noop_client.call_tool("add_exchange", {"user": "hello", "assistant": "hi"})
        data = _parse(await noop_client.call_tool("recall_memory", {"query": "hello"}))
        assert data["context"]["degraded"] is False
        assert data["context"]["recent_dialogue"] == "User: hello\nAssistant: hi"


# -----------------------------------------------------------------------
# add_concept
# -----------------------------------------------------------------------


class TestAddConcept:
    """Contract tests for the add_concept tool."""

    async def test_create_then_merge(self, mcp_client):
        args = {"name": "Paris", "definition": "Paris is the capital of France", "category": "facts"}
        first = _parse(await mcp_client.call_tool("add_concept", args))
        second = _parse(await mcp_client.call_tool("add_concept", args))

        assert first["outcome"] == "created"
        assert second["outcome"] == "merged"
        assert second["concept_id"] == first["concept_id"]

    async def test_contradiction(self, mcp_client):
        await mcp_client.call_tool(
            "add_concept",
            {"name": "pizza", "definition": "User loves pizza", "category": "preference"},
        )
        data = _parse(
            await mcp_client.call_tool(
                "add_concept",
                {"name": "pizza", "definition": "User hates pizza", "category": "preference"},
            )
        )
        assert data["outcome"] == "contradiction_resolved"

    async def test_rejects_blank_definition(self, mcp_client):
        data = _parse(
            await mcp_client.call_tool("add_concept", {"name": "x", "definition": "  "})
        )
        assert data["status"] == "rejected"
        assert data["error_code"] == "validation_error"

    async def test_rejects_out_of_range_confidence(self, mcp_client):
        data = _parse(
            await mcp_client.call_tool(
                "add_concept", {"name": "x", "definition": "y", "confidence": 2.0}
            )
        )
        assert data["status"] == "rejected"


# -----------------------------------------------------------------------
# sessions, stats, maintenance
# -----------------------------------------------------------------------


class TestMaintenanceTools:
    async def test_start_session(self, mcp_client):
        first = _parse(await mcp_client.call_tool("add_exchange", {"user": "hello"}))
        data = _parse(
            await mcp_client.call_tool("start_session", {"persona_name": "tutor"})
        )
        assert data["persona_name"] == "tutor"
        assert data["session_id"] != first["session_id"]

    async def test_memory_stats(self, mcp_client):
        await mcp_client.call_tool("add_exchange", {"user": "I work at Acme"})
        data = _parse(await mcp_client.call_tool("memory_stats", {}))
        assert data["episodic_count"] == 1
        assert data["triple_count"] == 1
        assert data["tier_occupancy"]["episodic"]["hot"] == 1
        assert data["corrupted_chunk_count"] == 0

    async def test_save_without_data_dir(self, mcp_client):
        data = _parse(await mcp_client.call_tool("save_memory", {}))
        assert data["persistent"] is False
        assert data["status"] == "ok"

    async def test_run_decay(self, mcp_client):
        data = _parse(await mcp_client.call_tool("run_decay", {}))
        assert data["pruned"] == 0


class TestUnconfigured:
    async def test_tool_fails_before_configure(self):
        from hybridmem.server import mcp
        from hybridmem.server import shutdown

        await shutdown()
        async with Client(mcp) as client:
            with pytest.raises(Exception):
                await client.call_tool("memory_stats", {})
