"""Shared helpers for model construction."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from datetime import timezone

_WHITESPACE_RE = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return ``{prefix}_{uuid4_hex}``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def normalize_name(name: str) -> str:
    """Case-fold, trim and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", name.strip()).casefold()
