"""Knowledge graph triple model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel
from pydantic import Field

from hybridmem.models.common import new_id
from hybridmem.models.common import utcnow


class Triple(BaseModel):
    """A ``(subject, predicate, object)`` relation between concept names."""

    id: str = Field(default_factory=lambda: new_id("tri"))
    subject: str = Field(description="Normalized subject name or free text.")
    predicate: str = Field(description="Relation label, e.g. likes, works_at.")
    object: str = Field(description="Normalized object name or free text.")
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    observations: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.subject, self.predicate, self.object)

    def involves(self, name: str) -> bool:
        return name in (self.subject, self.object)

    def __str__(self) -> str:
        return f"{self.subject} --{self.predicate}--> {self.object}"
