"""Persistence domain — chunked, checksummed on-disk storage."""

from hybridmem.persistence.chunk_store import ChunkStore
from hybridmem.persistence.chunks import decode_chunk
from hybridmem.persistence.chunks import encode_chunk
from hybridmem.persistence.manager import PersistenceManager
from hybridmem.persistence.snapshot import RecordSnapshot

__all__ = [
    "ChunkStore",
    "PersistenceManager",
    "RecordSnapshot",
    "decode_chunk",
    "encode_chunk",
]
