"""Audit subsystem — async JSONL event logging."""

from hybridmem.audit.schemas import AuditEvent
from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "emit_event",
]
