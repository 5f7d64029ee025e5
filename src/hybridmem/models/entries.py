"""Vector store entry models.

The entry ``kind`` is a discriminated union: ``EpisodicKind`` carries the
session/turn coordinates of a dialogue exchange, ``SemanticKind`` carries
the concept category.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from hybridmem.models.common import new_id
from hybridmem.models.common import utcnow
from hybridmem.models.concepts import ConceptCategory


class Tier(str, Enum):
    """Storage class of an entry."""

    hot = "hot"
    warm = "warm"
    cold = "cold"


class EpisodicKind(BaseModel):
    """Dialogue exchange coordinates."""

    model_config = {"frozen": True}

    kind: Literal["episodic"] = "episodic"
    session_id: str
    turn_index: int = Field(ge=0)


class SemanticKind(BaseModel):
    """Concept category tag."""

    model_config = {"frozen": True}

    kind: Literal["semantic"] = "semantic"
    category: ConceptCategory


EntryKind = Annotated[EpisodicKind | SemanticKind, Field(discriminator="kind")]


class MemoryEntry(BaseModel):
    """A single stored unit: text + embedding + kind + metadata."""

    model_config = {"frozen": True}

    id: str = Field(
        default_factory=lambda: new_id("ent"),
        description="Globally unique identifier, ent_{uuid4_hex}.",
    )
    text: str = Field(description="Original or derived textual content.")
    embedding: list[float] = Field(description="Fixed-length embedding vector.")
    kind: EntryKind = Field(description="Partition discriminant.")
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="Creation time (UTC).",
    )
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Auxiliary string attributes (session id, persona, ...).",
    )
