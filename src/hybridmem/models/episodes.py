"""Episodic memory models: sessions and their turns."""

from __future__ import annotations

from datetime import datetime
from datetime import timedelta

from pydantic import BaseModel
from pydantic import Field

from hybridmem.models.common import new_id
from hybridmem.models.common import utcnow


class Turn(BaseModel):
    """One user/assistant exchange inside a session."""

    index: int = Field(ge=0, description="Position inside the session.")
    user: str
    assistant: str
    timestamp: datetime = Field(default_factory=utcnow)
    entry_id: str | None = Field(
        default=None,
        description="Vector entry id; None until the exchange is embedded.",
    )

    def combined_text(self) -> str:
        return f"User: {self.user}\nAssistant: {self.assistant}"


class Session(BaseModel):
    """One conversation thread.  Turns are append-only and time-ordered."""

    id: str = Field(default_factory=lambda: new_id("ses"))
    persona_name: str = Field(default="assistant")
    turns: list[Turn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    metadata: dict[str, str] = Field(default_factory=dict)

    def append_turn(self, user: str, assistant: str, at: datetime) -> Turn:
        """Append a turn stamped *at*, nudged forward to keep strict order."""
        if self.turns and at <= self.turns[-1].timestamp:
            at = self.turns[-1].timestamp + timedelta(microseconds=1)
        turn = Turn(index=len(self.turns), user=user, assistant=assistant, timestamp=at)
        self.turns.append(turn)
        self.last_activity = at
        return turn

    def last_turns(self, n: int) -> list[Turn]:
        if n <= 0:
            return []
        return self.turns[-n:]

    def pending_turns(self) -> list[Turn]:
        return [turn for turn in self.turns if turn.entry_id is None]
