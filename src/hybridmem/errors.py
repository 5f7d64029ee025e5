"""Exception taxonomy for the memory engine.

Informational outcomes (a contradiction that was resolved, a duplicate
triple that was reinforced) are reported on result objects, not raised.
"""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for all engine errors."""


class DimensionMismatch(MemoryEngineError):
    """An embedding or query vector does not match the store dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )


class EmptyStore(MemoryEngineError):
    """Raised when searching a store that holds no entries at all."""


class EmbeddingError(MemoryEngineError):
    """Base class for embedding collaborator failures.

    ``record_id`` identifies data (a turn entry or concept) that was still
    captured even though it could not be vectorized.
    """

    def __init__(self, message: str, *, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class EmbeddingUnavailable(EmbeddingError):
    """No embedding backend is configured."""


class EmbeddingFailed(EmbeddingError):
    """The embedding backend raised or returned an unusable vector."""


class CorruptedChunk(MemoryEngineError):
    """A persisted chunk failed checksum or decoding."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupted chunk {path}: {reason}")


class UnknownConcept(MemoryEngineError):
    """A concept id was not found in semantic memory."""


class StoreNotLoaded(MemoryEngineError):
    """A write would replace persisted state that was never loaded."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Refusing to overwrite {path}: call load() first")
