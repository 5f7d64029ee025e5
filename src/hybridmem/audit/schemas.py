"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Categories of auditable memory events."""

    EXCHANGE_RECORDED = "EXCHANGE_RECORDED"
    CONCEPT_CREATED = "CONCEPT_CREATED"
    CONCEPT_MERGED = "CONCEPT_MERGED"
    CONTRADICTION_RESOLVED = "CONTRADICTION_RESOLVED"
    RELATION_ADDED = "RELATION_ADDED"
    RELATION_REINFORCED = "RELATION_REINFORCED"
    CONCEPT_PRUNED = "CONCEPT_PRUNED"
    DECAY_PASS = "DECAY_PASS"
    CHUNK_CORRUPTED = "CHUNK_CORRUPTED"
    SESSION_DELETED = "SESSION_DELETED"
    MEMORY_CLEANED = "MEMORY_CLEANED"
    MEMORY_IMPORTED = "MEMORY_IMPORTED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data (ids, names, confidences).",
    )
