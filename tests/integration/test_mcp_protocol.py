"""MCP protocol-level integration tests.

Verifies tool registration, a persisted save/restart roundtrip and
corruption reporting at the MCP protocol layer via ``fastmcp.Client``.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastmcp import Client

from hybridmem.config import AuditConfig
from hybridmem.embedding import HashEmbedder
from hybridmem.server import configure
from hybridmem.server import mcp
from hybridmem.server import shutdown


@pytest.fixture(autouse=True)
async def _clean():
    yield
    await shutdown()


def _parse(result) -> dict:
    return json.loads(result.content[0].text)


class TestMcpProtocol:
    """Protocol-level checks for the hybridmem server."""

    async def test_list_tools(self):
        await configure(HashEmbedder(64))
        async with Client(mcp) as client:
            tools = await client.list_tools()
            names = {t.name for t in tools}
            assert names == {
                "recall_memory",
                "add_exchange",
                "add_concept",
                "start_session",
                "memory_stats",
                "save_memory",
                "run_decay",
            }

    async def test_save_restart_recall_roundtrip(self, tmp_path: Path):
        data_dir = tmp_path / "memory"
        audit = AuditConfig(file_path=str(tmp_path / "audit.jsonl"))

        await configure(HashEmbedder(64), data_dir=data_dir, audit_config=audit)
        async with Client(mcp) as client:
            await client.call_tool(
                "add_exchange",
                {"user": "I work at Acme", "assistant": "Nice"},
            )
            await client.call_tool(
                "add_exchange",
                {"user": "I love pizza", "assistant": "Noted"},
            )
            saved = _parse(await client.call_tool("save_memory", {}))
            assert saved["status"] == "ok"
            assert saved["persistent"] is True
        await shutdown()

        report = await configure(HashEmbedder(64), data_dir=data_dir, audit_config=audit)
        assert report.sessions == 1
        assert report.concepts == 1
        assert report.triples == 2
        assert report.corrupted_chunk_count == 0

        async with Client(mcp) as client:
            stats = _parse(await client.call_tool("memory_stats", {}))
            assert stats["episodic_count"] == 2
            assert stats["semantic_count"] == 1
            assert stats["pending_embeddings"] == 0

            recall = _parse(
                await client.call_tool("recall_memory", {"query": "work at Acme"})
            )
            texts = [e["text"] for e in recall["context"]["relevant_episodes"]]
            assert any("Acme" in t for t in texts)

            # The restored session stays current.
            assert "I love pizza" in recall["context"]["recent_dialogue"]

    async def test_corrupted_chunk_reported(self, tmp_path: Path):
        from hybridmem.config import MemoryConfig
        from hybridmem.config import PersistenceConfig

        data_dir = tmp_path / "memory"
        config = MemoryConfig(persistence=PersistenceConfig(chunk_size=1, auto_save_every=0))

        await configure(HashEmbedder(64), config=config, data_dir=data_dir)
        async with Client(mcp) as client:
            for i in range(3):
                await client.call_tool("add_exchange", {"user": f"note number {i}"})
            await client.call_tool("save_memory", {})
        await shutdown()

        chunk = data_dir / "episodic" / "vectors" / "chunk_000002.hmc"
        chunk.write_bytes(chunk.read_bytes()[:-4])

        report = await configure(HashEmbedder(64), config=config, data_dir=data_dir)
        assert report.corrupted_chunks == ["episodic/chunk_000002.hmc"]

        async with Client(mcp) as client:
            stats = _parse(await client.call_tool("memory_stats", {}))
            assert stats["corrupted_chunk_count"] == 1
            assert stats["episodic_count"] == 3
            assert stats["pending_embeddings"] == 1
