"""Chunk file codec and atomic file publication.

Chunk layout::

    b"HMC1" | sha256(body) (32 bytes) | body = zlib(json payload)

Every chunk is compressed and checksummed on its own, so a damaged file
only loses the records it holds.  Files are written to a temporary name,
fsynced, then renamed into place; a reader never sees a half-written
chunk.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
import zlib
from pathlib import Path
from typing import Any

from hybridmem.errors import CorruptedChunk

logger = logging.getLogger(__name__)

MAGIC = b"HMC1"
DIGEST_SIZE = 32
HEADER_SIZE = len(MAGIC) + DIGEST_SIZE
CHUNK_SUFFIX = ".hmc"
TMP_SUFFIX = ".tmp"


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def encode_chunk(payload: Any) -> bytes:
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    body = zlib.compress(raw)
    return MAGIC + hashlib.sha256(body).digest() + body


def chunk_checksum(data: bytes) -> str:
    """Hex checksum stored in the header of an encoded chunk."""
    return data[len(MAGIC):HEADER_SIZE].hex()


def verify_chunk(data: bytes, path: str, expected: str | None = None) -> bytes:
    """Check header, digest and (optionally) the indexed checksum; return the body."""
    if len(data) < HEADER_SIZE:
        raise CorruptedChunk(path, "truncated header")
    if data[:len(MAGIC)] != MAGIC:
        raise CorruptedChunk(path, "bad magic")
    stored = data[len(MAGIC):HEADER_SIZE]
    body = data[HEADER_SIZE:]
    if hashlib.sha256(body).digest() != stored:
        raise CorruptedChunk(path, "checksum mismatch")
    if expected is not None and stored.hex() != expected:
        raise CorruptedChunk(path, "checksum differs from index")
    return body


def decode_chunk(data: bytes, path: str, expected: str | None = None) -> Any:
    body = verify_chunk(data, path, expected)
    try:
        return json.loads(zlib.decompress(body).decode("utf-8"))
    except (zlib.error, UnicodeDecodeError, ValueError) as exc:
        raise CorruptedChunk(path, f"undecodable body: {exc}") from exc


def read_chunk(path: Path, expected: str | None = None, *, verify: bool = True) -> Any:
    """Read and decode *path*.  Missing or damaged files raise ``CorruptedChunk``."""
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise CorruptedChunk(str(path), "missing file") from exc
    if not verify:
        if len(data) < HEADER_SIZE or data[:len(MAGIC)] != MAGIC:
            raise CorruptedChunk(str(path), "bad header")
        try:
            return json.loads(zlib.decompress(data[HEADER_SIZE:]).decode("utf-8"))
        except (zlib.error, UnicodeDecodeError, ValueError) as exc:
            raise CorruptedChunk(str(path), f"undecodable body: {exc}") from exc
    return decode_chunk(data, str(path), expected)


# ---------------------------------------------------------------------------
# Atomic publication
# ---------------------------------------------------------------------------


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* via temp file + fsync + ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}{TMP_SUFFIX}")
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


def atomic_write_json(path: Path, payload: Any) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    atomic_write_bytes(path, text.encode("utf-8"))


def _fsync_dir(directory: Path) -> None:
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync of directory %s not supported", directory)
    finally:
        os.close(fd)


def remove_stale_temp_files(directory: Path) -> int:
    """Delete leftovers of interrupted writes."""
    if not directory.is_dir():
        return 0
    removed = 0
    for tmp in directory.glob(f".*{TMP_SUFFIX}"):
        tmp.unlink(missing_ok=True)
        removed += 1
    if removed:
        logger.info("Removed %d stale temp files from %s", removed, directory)
    return removed
