"""Unit tests for embedders and the embed_text failure contract."""

from __future__ import annotations

import math

import pytest

from hybridmem.embedding import Embedder
from hybridmem.embedding import HashEmbedder
from hybridmem.embedding import NoopEmbedder
from hybridmem.embedding import embed_text
from hybridmem.embedding import tokenise
from hybridmem.errors import DimensionMismatch
from hybridmem.errors import EmbeddingFailed
from hybridmem.errors import EmbeddingUnavailable
from hybridmem.vector import EmbeddingCache
from hybridmem.vector import cosine_similarity


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _StaticEmbedder:
    def __init__(self, vector: list[float], dimension: int | None = None) -> None:
        self.vector = vector
        self.dimension = dimension if dimension is not None else len(vector)
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        return self.vector


class _BrokenEmbedder:
    dimension = 4

    async def embed(self, text: str) -> list[float]:
        raise RuntimeError("model crashed")


# ---------------------------------------------------------------------------
# Tokenisation
# ---------------------------------------------------------------------------


class TestTokenise:
    def test_stopwords_only_feed_ngrams(self):
        words, ngrams = tokenise("The cat")
        assert words == ["cat"]
        assert "#th" in ngrams

    def test_lowercases(self):
        words, _ = tokenise("PIZZA Pasta")
        assert words == ["pizza", "pasta"]


# ---------------------------------------------------------------------------
# HashEmbedder
# ---------------------------------------------------------------------------


class TestHashEmbedder:
    def test_satisfies_protocol(self):
        assert isinstance(HashEmbedder(16), Embedder)

    def test_dimension_and_unit_norm(self):
        vec = HashEmbedder(32).embed_sync("I love pizza")
        assert len(vec) == 32
        assert math.sqrt(sum(x * x for x in vec)) == pytest.approx(1.0)

    def test_deterministic_across_instances(self):
        assert HashEmbedder(32).embed_sync("green tea") == HashEmbedder(32).embed_sync("green tea")

    def test_related_text_scores_higher(self):
        emb = HashEmbedder(256)
        base = emb.embed_sync("I love pizza with cheese")
        near = emb.embed_sync("pizza with extra cheese")
        far = emb.embed_sync("quarterly tax filing deadline")
        assert cosine_similarity(base, near) > cosine_similarity(base, far)

    def test_empty_text_is_zero_vector(self):
        assert HashEmbedder(8).embed_sync("") == [0.0] * 8

    def test_invalid_dimension(self):
        with pytest.raises(ValueError):
            HashEmbedder(0)


# ---------------------------------------------------------------------------
# embed_text
# ---------------------------------------------------------------------------


class TestEmbedText:
    @pytest.mark.asyncio
    async def test_uses_cache(self):
        emb = _StaticEmbedder([1.0, 0.0])
        cache = EmbeddingCache(4)
        await embed_text(emb, "x", cache)
        await embed_text(emb, "x", cache)
        assert emb.calls == 1

    @pytest.mark.asyncio
    async def test_unavailable_passes_through(self):
        with pytest.raises(EmbeddingUnavailable):
            await embed_text(NoopEmbedder(4), "x")

    @pytest.mark.asyncio
    async def test_foreign_exception_wrapped(self):
        with pytest.raises(EmbeddingFailed) as exc_info:
            await embed_text(_BrokenEmbedder(), "x")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_wrong_length(self):
        with pytest.raises(DimensionMismatch):
            await embed_text(_StaticEmbedder([1.0, 0.0], dimension=3), "x")

    @pytest.mark.asyncio
    async def test_non_finite_rejected(self):
        cache = EmbeddingCache(4)
        with pytest.raises(EmbeddingFailed):
            await embed_text(_StaticEmbedder([math.nan, 0.0]), "x", cache)
        assert "x" not in cache
