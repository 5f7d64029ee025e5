"""Semantic memory models: concepts and concept candidates."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

from hybridmem.models.common import new_id
from hybridmem.models.common import utcnow

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConceptCategory(str, Enum):
    """Closed set of concept categories."""

    fact = "fact"
    preference = "preference"
    rule = "rule"
    skill = "skill"
    goal = "goal"
    general = "general"

    @classmethod
    def parse(cls, value: str | ConceptCategory | None) -> ConceptCategory:
        """Lenient parse accepting plurals and any case; unknown -> general."""
        if isinstance(value, ConceptCategory):
            return value
        if not value:
            return cls.general
        token = value.strip().lower()
        try:
            return cls(token)
        except ValueError:
            pass
        if token.endswith("s"):
            try:
                return cls(token[:-1])
            except ValueError:
                pass
        return cls.general


class ConceptSource(str, Enum):
    """Where a concept came from."""

    learned_from_dialogue = "learned_from_dialogue"
    manual = "manual"


class Polarity(str, Enum):
    """Sentiment direction of a statement about a subject."""

    positive = "positive"
    negative = "negative"
    neutral = "neutral"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ConceptCandidate(BaseModel):
    """A proposed concept, before deduplication."""

    name: str = Field(description="Short canonical label for the concept.")
    definition: str = Field(description="Full statement of the concept.")
    category: ConceptCategory = Field(
        default=ConceptCategory.general,
        description="Category the concept belongs to.",
    )
    confidence: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Initial confidence; baseline is used when omitted.",
    )
    source: ConceptSource = Field(
        default=ConceptSource.manual,
        description="Origin of the candidate.",
    )

    @field_validator("name", "definition")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class Concept(BaseModel):
    """A distilled, deduplicated fact held in semantic memory.

    ``confidence`` and ``importance`` are the only fields that evolve after
    creation (besides a contradiction rewriting the statement).
    ``reinforced_confidence`` is the confidence at ``last_reinforced_at`` and
    anchors the decay computation.
    """

    id: str = Field(
        default_factory=lambda: new_id("con"),
        description="Unique identifier, con_{uuid4_hex}.",
    )
    name: str = Field(description="Normalized canonical label.")
    definition: str = Field(description="Full statement text.")
    category: ConceptCategory = Field(default=ConceptCategory.general)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reinforced_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    source: ConceptSource = Field(default=ConceptSource.manual)
    polarity: Polarity = Field(default=Polarity.neutral)
    created_at: datetime = Field(default_factory=utcnow)
    last_reinforced_at: datetime = Field(default_factory=utcnow)
    usage_count: int = Field(default=1, ge=0)
    entry_id: str | None = Field(
        default=None,
        description="Vector entry id; None while the concept awaits embedding.",
    )
    metadata: dict[str, str] = Field(default_factory=dict)

    def summary(self) -> str:
        return f"{self.name} ({self.category.value}, confidence {self.confidence:.2f}): {self.definition}"
