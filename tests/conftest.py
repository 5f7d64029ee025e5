"""Root conftest — suite markers and shared deterministic fakes.

Embedders and clocks are injected, so every test runs without a model
and without wall-clock dependence.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path

import pytest

from hybridmem.embedding import HashEmbedder
from hybridmem.errors import EmbeddingFailed

logger = logging.getLogger(__name__)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Attach suite markers from test path.

    - `tests/unit/*` -> `unit`
    - `tests/integration/*` -> `integration`
    """
    root = Path(__file__).resolve().parents[1]
    for item in items:
        item_path = Path(str(item.fspath)).resolve()
        try:
            rel = item_path.relative_to(root)
        except ValueError:
            continue

        parts = rel.parts
        if len(parts) < 2 or parts[0] != "tests":
            continue
        if parts[1] == "unit":
            item.add_marker(pytest.mark.unit)
        elif parts[1] == "integration":
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FlakyEmbedder:
    """Hash embedder that can be switched into a failing state."""

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.failing = False
        self.calls = 0
        self._inner = HashEmbedder(dimension)

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.failing:
            raise EmbeddingFailed("backend down")
        return await self._inner.embed(text)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def embedder() -> FlakyEmbedder:
    return FlakyEmbedder()
