"""hybridmem — FastMCP v2 server exposing the hybrid memory engine.

Tools delegate to a module-level ``HybridMemory``.  Call
``configure(...)`` before using the server and ``shutdown()`` to persist
and release it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from time import perf_counter

from fastmcp import FastMCP
from pydantic import ValidationError

from hybridmem.audit import AuditLogger
from hybridmem.config import AuditConfig
from hybridmem.config import MemoryConfig
from hybridmem.embedding import Embedder
from hybridmem.embedding import HashEmbedder
from hybridmem.engine import HybridMemory
from hybridmem.errors import EmbeddingError
from hybridmem.models.concepts import ConceptCandidate
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.schemas import ConceptToolResult
from hybridmem.models.schemas import DecayReport
from hybridmem.models.schemas import ExchangeInput
from hybridmem.models.schemas import ExchangeResult
from hybridmem.models.schemas import LoadReport
from hybridmem.models.schemas import MemoryStats
from hybridmem.models.schemas import RecallResult
from hybridmem.models.schemas import SaveResult
from hybridmem.models.schemas import SessionResult
from hybridmem.observability import record_latency

mcp = FastMCP("hybridmem")

# ---------------------------------------------------------------------------
# Engine instance (set via configure())
# ---------------------------------------------------------------------------

_engine: HybridMemory | None = None


async def configure(
    embedder: Embedder | None = None,
    *,
    config: MemoryConfig | None = None,
    data_dir: Path | str | None = None,
    audit_config: AuditConfig | None = None,
    clock: Callable[[], datetime] | None = None,
    start_decay: bool = False,
) -> LoadReport:
    """Build the engine and load persisted state.

    Must be called before the MCP tools can function.
    """
    global _engine
    if _engine is not None:
        await shutdown()
    audit = AuditLogger(audit_config) if audit_config is not None else None
    engine = HybridMemory(
        embedder or HashEmbedder(),
        config,
        data_dir=data_dir,
        audit=audit,
        clock=clock,
    )
    report = await engine.open()
    if start_decay:
        engine.start_decay_scheduler()
    _engine = engine
    return report


async def shutdown() -> None:
    """Save and release the engine."""
    global _engine
    engine = _engine
    _engine = None
    if engine is not None:
        await engine.close()


def _get_engine() -> HybridMemory:
    """Return the engine instance or raise."""
    if _engine is None:
        raise RuntimeError("Memory engine not configured. Call configure() first.")
    return _engine


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def recall_memory(query: str, episodes: int = 3, concepts: int = 5) -> RecallResult:
    """Recall dialogue and knowledge relevant to a query.

    Args:
        query: Natural language query.
        episodes: Max past exchanges returned.
        concepts: Max concepts returned.
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        context = await engine.recall(query, max(0, episodes), max(0, concepts))
        ok = not context.degraded
        return RecallResult(context=context, prompt=context.format_for_prompt())
    finally:
        record_latency(
            operation="mcp.recall_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def add_exchange(user: str, assistant: str = "") -> ExchangeResult:
    """Record one user/assistant exchange in the current session.

    Args:
        user: The user's utterance (the only text facts are learned from).
        assistant: The assistant's reply.
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        try:
            validated = ExchangeInput.model_validate({"user": user, "assistant": assistant})
        except ValidationError as exc:
            return ExchangeResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        session = engine.episodic.current_session
        try:
            turn = await engine.add_exchange(validated.user, validated.assistant)
        except EmbeddingError as exc:
            return ExchangeResult(
                status="stored_without_embedding",
                session_id=session.id,
                turn_index=len(session.turns) - 1,
                error_code=type(exc).__name__,
                message=str(exc),
            )
        ok = True
        return ExchangeResult(session_id=session.id, turn_index=turn.index)
    finally:
        record_latency(
            operation="mcp.add_exchange",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def add_concept(
    name: str,
    definition: str,
    category: str = "general",
    confidence: float | None = None,
) -> ConceptToolResult:
    """Add a concept to semantic memory (deduplicated, contradiction-aware).

    Args:
        name: Short canonical label.
        definition: Full statement.
        category: fact, preference, rule, skill, goal or general.
        confidence: Optional initial confidence in [0, 1].
    """
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        try:
            candidate = ConceptCandidate.model_validate(
                {
                    "name": name,
                    "definition": definition,
                    "category": ConceptCategory.parse(category),
                    "confidence": confidence,
                }
            )
        except ValidationError as exc:
            return ConceptToolResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            result = await engine.add_concept(candidate)
        except EmbeddingError as exc:
            return ConceptToolResult(
                status="stored_without_embedding",
                concept_id=exc.record_id or "",
                error_code=type(exc).__name__,
                message=str(exc),
            )
        ok = True
        return ConceptToolResult(concept_id=result.concept_id, outcome=result.outcome)
    finally:
        record_latency(
            operation="mcp.add_concept",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def start_session(persona_name: str | None = None) -> SessionResult:
    """Archive the current session and open a new one.

    Args:
        persona_name: Persona the new session belongs to.
    """
    start = perf_counter()
    ok = False
    try:
        session = await _get_engine().start_session(persona_name)
        ok = True
        return SessionResult(session_id=session.id, persona_name=session.persona_name)
    finally:
        record_latency(
            operation="mcp.start_session",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def memory_stats() -> MemoryStats:
    """Report entry counts, tier occupancy and corrupted chunks."""
    return _get_engine().stats()


@mcp.tool
async def save_memory() -> SaveResult:
    """Persist memory to the data directory."""
    start = perf_counter()
    ok = False
    try:
        engine = _get_engine()
        if not engine.persistent:
            ok = True
            return SaveResult(persistent=False, message="No data directory configured.")
        try:
            await engine.save()
        except OSError as exc:
            return SaveResult(status="error", message=str(exc))
        ok = True
        return SaveResult()
    finally:
        record_latency(
            operation="mcp.save_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def run_decay() -> DecayReport:
    """Run one temporal decay pass over semantic memory."""
    return await _get_engine().run_decay()

