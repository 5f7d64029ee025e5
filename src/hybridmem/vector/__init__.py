"""Vector domain — tiered entry storage and cosine search."""

from hybridmem.vector.cache import EmbeddingCache
from hybridmem.vector.cold import ColdRecord
from hybridmem.vector.cold import ColdStorage
from hybridmem.vector.cold import InMemoryColdStorage
from hybridmem.vector.similarity import cosine_similarity
from hybridmem.vector.store import EntryFilter
from hybridmem.vector.store import SearchHit
from hybridmem.vector.store import VectorStore
from hybridmem.vector.tiers import InvalidTransition
from hybridmem.vector.tiers import TierIndex

__all__ = [
    "ColdRecord",
    "ColdStorage",
    "EmbeddingCache",
    "EntryFilter",
    "InMemoryColdStorage",
    "InvalidTransition",
    "SearchHit",
    "TierIndex",
    "VectorStore",
    "cosine_similarity",
]
