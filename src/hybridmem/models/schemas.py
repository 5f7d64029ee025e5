"""Result models exposed to the conversation orchestrator.

These shape the outputs of recall, concept/relation intake, decay, loading
and statistics.  FastMCP serializes them directly.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from pydantic import Field

from hybridmem.models.common import utcnow
from hybridmem.models.concepts import Concept
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.episodes import Session
from hybridmem.models.graph import Triple

# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class ConceptOutcome(str, Enum):
    """What ``add_concept`` did with a candidate."""

    created = "created"
    merged = "merged"
    contradiction_resolved = "contradiction_resolved"


class RelationOutcome(str, Enum):
    """What ``add_relation`` did with a triple."""

    inserted = "inserted"
    reinforced = "reinforced"


class AddConceptResult(BaseModel):
    concept_id: str
    outcome: ConceptOutcome
    concept: Concept


class RelationResult(BaseModel):
    triple: Triple
    outcome: RelationOutcome


# ---------------------------------------------------------------------------
# Recall
# ---------------------------------------------------------------------------


class EpisodeHit(BaseModel):
    """A ranked past exchange."""

    text: str = Field(description="Formatted snippet including relevance.")
    score: float = Field(description="Cosine similarity to the query.")
    session_id: str
    turn_index: int
    entry_id: str


class ConceptHit(BaseModel):
    """A ranked concept summary."""

    concept_id: str
    name: str
    definition: str
    category: ConceptCategory
    confidence: float
    importance: float
    score: float = Field(description="Cosine similarity to the query.")
    related: list[str] = Field(
        default_factory=list,
        description="Names reachable through the knowledge graph.",
    )

    def summary(self) -> str:
        return f"{self.name} (confidence: {self.confidence:.2f}): {self.definition}"


class MemoryContext(BaseModel):
    """Everything recalled for one query."""

    recent_dialogue: str = ""
    relevant_episodes: list[EpisodeHit] = Field(default_factory=list)
    relevant_concepts: list[ConceptHit] = Field(default_factory=list)
    confidence_score: float = Field(
        default=0.0,
        description="Mean similarity of all returned hits, 0 when none.",
    )
    retrieval_time: float = Field(default=0.0, description="Milliseconds.")
    degraded: bool = Field(
        default=False,
        description="True when similarity recall was unavailable.",
    )

    def format_for_prompt(self) -> str:
        """Render the context block handed to the generation collaborator."""
        parts: list[str] = []
        if self.relevant_concepts:
            parts.append("=== Relevant Knowledge ===")
            for hit in self.relevant_concepts:
                line = f"- {hit.summary()}"
                if hit.related:
                    line += f" [related: {', '.join(hit.related)}]"
                parts.append(line)
            parts.append("")
        if self.relevant_episodes:
            parts.append("=== Relevant Past Dialogues ===")
            for i, hit in enumerate(self.relevant_episodes, start=1):
                parts.append(f"Episode {i}: {hit.text}")
            parts.append("")
        if self.recent_dialogue:
            parts.append("=== Current Dialogue ===")
            parts.append(self.recent_dialogue)
            parts.append("")
        return "\n".join(parts).rstrip()


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TierOccupancy(BaseModel):
    hot: int = 0
    warm: int = 0
    cold: int = 0

    @property
    def total(self) -> int:
        return self.hot + self.warm + self.cold


class MemoryStats(BaseModel):
    episodic_count: int = Field(description="Stored turns across all sessions.")
    semantic_count: int = Field(description="Stored concepts.")
    triple_count: int
    tier_occupancy: dict[str, TierOccupancy] = Field(
        description="Per-partition tier counts (episodic, semantic).",
    )
    corrupted_chunk_count: int = 0
    session_count: int = 0
    pending_embeddings: int = Field(
        default=0,
        description="Turns and concepts awaiting a successful embedding.",
    )


class DecayReport(BaseModel):
    updated: int = 0
    pruned: int = 0
    pruned_names: list[str] = Field(default_factory=list)


class CategoryDecayStats(BaseModel):
    total: int = 0
    mean_confidence: float = 0.0
    low_confidence: int = 0


class LoadReport(BaseModel):
    sessions: int = 0
    concepts: int = 0
    triples: int = 0
    entries: int = 0
    corrupted_chunk_count: int = 0
    corrupted_chunks: list[str] = Field(default_factory=list)


class DecayedConcept(BaseModel):
    """A concept ranked by the confidence decay would give it now."""

    concept: Concept
    effective_confidence: float


class CleanupReport(BaseModel):
    sessions: int = 0
    turns: int = 0
    concepts: int = 0
    triples: int = 0

    @property
    def total(self) -> int:
        return self.turns + self.concepts


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

EXPORT_VERSION = "1.0"


class MemoryExport(BaseModel):
    """Portable JSON snapshot of sessions, concepts and triples.

    Vector entries are not part of it; an import re-embeds the text.
    """

    version: str = EXPORT_VERSION
    export_timestamp: datetime = Field(default_factory=utcnow)
    current_session_id: str | None = None
    episodic_sessions: list[Session] = Field(default_factory=list)
    concepts: list[Concept] = Field(default_factory=list)
    triples: list[Triple] = Field(default_factory=list)


class ImportReport(BaseModel):
    sessions: int = 0
    concepts: int = 0
    triples: int = 0
    pending_embeddings: int = Field(
        default=0,
        description="Turns and concepts still waiting for an embedding afterwards.",
    )


# ---------------------------------------------------------------------------
# MCP tool payloads
# ---------------------------------------------------------------------------


class ExchangeInput(BaseModel):
    user: str = Field(min_length=1, description="The user's utterance.")
    assistant: str = Field(default="", description="The assistant's reply.")


class ExchangeResult(BaseModel):
    status: str = Field(
        default="ok",
        description="ok, stored_without_embedding or rejected.",
    )
    session_id: str = ""
    turn_index: int | None = None
    error_code: str | None = None
    message: str | None = None


class ConceptToolResult(BaseModel):
    status: str = Field(
        default="ok",
        description="ok, stored_without_embedding or rejected.",
    )
    concept_id: str = ""
    outcome: ConceptOutcome | None = None
    error_code: str | None = None
    message: str | None = None


class SessionResult(BaseModel):
    session_id: str
    persona_name: str


class RecallResult(BaseModel):
    context: MemoryContext
    prompt: str = Field(description="Context rendered for the generation model.")


class SaveResult(BaseModel):
    status: str = "ok"
    persistent: bool = True
    message: str | None = None
