"""Embedding collaborator interface and deterministic local embedders.

The engine only needs a fixed dimension and ``await embed(text)``.
``HashEmbedder`` gives meaningful similarity for short texts without a
model: word unigrams and character n-grams are mapped to pseudo-random
unit vectors (random indexing), summed with weights and L2-normalised.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from collections import Counter
from typing import Protocol
from typing import runtime_checkable

import numpy as np

from hybridmem.errors import DimensionMismatch
from hybridmem.errors import EmbeddingError
from hybridmem.errors import EmbeddingFailed
from hybridmem.errors import EmbeddingUnavailable
from hybridmem.vector.cache import EmbeddingCache

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384


@runtime_checkable
class Embedder(Protocol):
    """Text -> fixed-length vector.  ``embed`` may raise."""

    dimension: int

    async def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# Tokenisation
# ---------------------------------------------------------------------------

_WORD_RE = re.compile(r"[a-z0-9']+")
_STOPWORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "shall", "can",
    "to", "of", "in", "for", "on", "with", "at", "by", "from",
    "as", "into", "about", "and", "but", "or", "so", "this", "that",
    "these", "those", "it", "its", "i", "me", "my", "we", "our",
    "you", "your", "he", "him", "his", "she", "her", "they", "them",
    "their", "what", "which", "who", "just",
})


def _char_ngrams(word: str, sizes: tuple[int, ...] = (3, 4)) -> list[str]:
    padded = f"#{word}#"
    grams: list[str] = []
    for n in sizes:
        for i in range(len(padded) - n + 1):
            grams.append(padded[i:i + n])
    return grams


def tokenise(text: str) -> tuple[list[str], list[str]]:
    """Return ``(words, char_ngrams)``; stopwords only feed the n-grams."""
    all_words = _WORD_RE.findall(text.lower())
    words = [w for w in all_words if w not in _STOPWORDS and len(w) > 1]
    ngrams: list[str] = []
    for w in all_words:
        if len(w) > 2:
            ngrams.extend(_char_ngrams(w))
    return words, ngrams


# ---------------------------------------------------------------------------
# Embedders
# ---------------------------------------------------------------------------


class HashEmbedder:
    """Deterministic random-indexing embedder.

    Feature vectors are memoised in a per-instance ``EmbeddingCache``
    so two embedders never share state.
    """

    def __init__(self, dimension: int = DEFAULT_DIMENSION, *, cache_size: int = 10000) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self._features = EmbeddingCache(cache_size)

    def _feature_vector(self, feature: str) -> np.ndarray:
        cached = self._features.get(feature)
        if cached is not None:
            return np.asarray(cached, dtype=np.float64)

        rounds = math.ceil(self.dimension * 4 / 32)
        seed = feature.encode("utf-8")
        blocks: list[bytes] = []
        for _ in range(rounds):
            seed = hashlib.sha256(seed).digest()
            blocks.append(seed)
        raw = np.frombuffer(b"".join(blocks), dtype=">u4", count=self.dimension)
        vec = raw.astype(np.float64) / 2147483647.5 - 1.0
        norm = np.linalg.norm(vec)
        if norm < 1e-10:
            vec = np.zeros(self.dimension, dtype=np.float64)
        else:
            vec = vec / norm
        self._features.put(feature, vec.tolist())
        return vec

    def embed_sync(self, text: str) -> list[float]:
        """Words weigh 3.0 and n-grams 1.0, each scaled by ``1 + log(count)``."""
        words, ngrams = tokenise(text)
        vec = np.zeros(self.dimension, dtype=np.float64)
        for word, count in Counter(words).items():
            vec += 3.0 * (1.0 + math.log(count)) * self._feature_vector(f"w:{word}")
        for gram, count in Counter(ngrams).items():
            vec += (1.0 + math.log(count)) * self._feature_vector(f"c:{gram}")
        norm = np.linalg.norm(vec)
        if norm < 1e-10:
            return [0.0] * self.dimension
        return (vec / norm).tolist()

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


class NoopEmbedder:
    """Placeholder for a missing backend; every call is unavailable."""

    def __init__(self, dimension: int = DEFAULT_DIMENSION) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingUnavailable("No embedding backend configured")


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


async def embed_text(
    embedder: Embedder,
    text: str,
    cache: EmbeddingCache | None = None,
) -> list[float]:
    """Embed *text* through *cache*, normalising collaborator failures.

    Raises ``EmbeddingUnavailable``/``EmbeddingFailed`` for backend
    problems and ``DimensionMismatch`` when the vector has the wrong size.
    """
    if cache is not None:
        hit = cache.get(text)
        if hit is not None:
            return list(hit)

    try:
        raw = await embedder.embed(text)
    except EmbeddingError:
        raise
    except Exception as exc:
        logger.warning("Embedding backend raised %s", type(exc).__name__)
        raise EmbeddingFailed(f"Embedding failed: {exc}") from exc

    try:
        vector = [float(x) for x in raw]
    except (TypeError, ValueError) as exc:
        raise EmbeddingFailed(f"Embedding returned an unusable vector: {exc}") from exc
    if len(vector) != embedder.dimension:
        raise DimensionMismatch(embedder.dimension, len(vector))
    if not all(math.isfinite(x) for x in vector):
        raise EmbeddingFailed("Embedding returned non-finite values")

    if cache is not None:
        cache.put(text, vector)
    return vector
