"""Unit test fixtures — FastMCP client and metric cleanup."""

from __future__ import annotations

import pytest
from fastmcp import Client

from hybridmem.embedding import HashEmbedder
from hybridmem.observability import reset_metrics


@pytest.fixture()
async def mcp_client():
    """Yield a FastMCP Client wired to an in-memory hybridmem server."""
    from hybridmem.server import configure
    from hybridmem.server import mcp
    from hybridmem.server import shutdown

    await configure(HashEmbedder(64))

    async with Client(mcp) as client:
        yield client

    await shutdown()


@pytest.fixture(autouse=True)
def clean_metrics():
    """Reset in-process counters between tests."""
    reset_metrics()
    yield
    reset_metrics()
