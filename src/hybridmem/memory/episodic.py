"""Episodic memory: sessions of dialogue turns plus similarity recall.

A turn is appended to its session before the embedding collaborator is
awaited, so dialogue history survives embedding failures.  Such turns
keep ``entry_id=None`` until ``retry_pending`` succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from hybridmem.audit.schemas import AuditEventType
from hybridmem.audit.store import AuditLogger
from hybridmem.audit.store import emit_event
from hybridmem.config import EpisodicConfig
from hybridmem.embedding import Embedder
from hybridmem.embedding import embed_text
from hybridmem.errors import EmbeddingError
from hybridmem.errors import EmptyStore
from hybridmem.models.common import utcnow
from hybridmem.models.entries import EpisodicKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.episodes import Session
from hybridmem.models.episodes import Turn
from hybridmem.models.schemas import EpisodeHit
from hybridmem.vector.store import EntryFilter
from hybridmem.vector.store import VectorStore

logger = logging.getLogger(__name__)


def _truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3].rstrip() + "..."


def turn_record_id(session_id: str, turn_index: int) -> str:
    return f"{session_id}:{turn_index}"


class EpisodicMemory:
    """Session/turn bookkeeping over an episodic ``VectorStore`` partition."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        config: EpisodicConfig | None = None,
        *,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or EpisodicConfig()
        self._audit = audit
        self._clock = clock or utcnow
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}
        self._current = self._new_session(self._config.persona_name)

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def current_session(self) -> Session:
        return self._current

    def sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def turn_count(self) -> int:
        return sum(len(s.turns) for s in self._sessions.values())

    def pending_count(self) -> int:
        return sum(len(s.pending_turns()) for s in self._sessions.values())

    def _new_session(self, persona_name: str) -> Session:
        now = self._clock()
        session = Session(persona_name=persona_name, created_at=now, last_activity=now)
        self._sessions[session.id] = session
        return session

    # -- sessions --

    async def start_session(self, persona_name: str | None = None) -> Session:
        """Archive the current session and open a new one."""
        async with self._lock:
            self._current = self._new_session(persona_name or self._config.persona_name)
            await self._enforce_session_cap()
            logger.info("Started session %s", self._current.id)
            return self._current

    async def load_session(self, session_id: str) -> Session | None:
        """Make an archived session current again.  Unknown ids yield ``None``."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            self._current = session
            logger.info("Resumed session %s", session.id)
            return session

    async def delete_session(self, session_id: str) -> bool:
        """Forget a session and its vector entries.

        Deleting the current session opens a fresh one with the same persona.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            await self._drop(session)
            if session.id == self._current.id:
                self._current = self._new_session(session.persona_name)
        await emit_event(
            self._audit,
            AuditEventType.SESSION_DELETED,
            session_id=session_id,
            turns=len(session.turns),
        )
        return True

    async def cleanup_older_than(self, cutoff: datetime) -> tuple[int, int]:
        """Drop archived sessions idle since *cutoff* or earlier.

        Returns ``(sessions, turns)`` removed.  The current session is kept.
        """
        sessions = turns = 0
        async with self._lock:
            stale = [
                s
                for s in self._sessions.values()
                if s.id != self._current.id and s.last_activity <= cutoff
            ]
            for session in stale:
                await self._drop(session)
                sessions += 1
                turns += len(session.turns)
        if sessions:
            logger.info("Cleaned up %d sessions (%d turns) idle since %s", sessions, turns, cutoff)
        return sessions, turns

    async def _drop(self, session: Session) -> None:
        del self._sessions[session.id]
        for turn in session.turns:
            if turn.entry_id is not None:
                await self._store.remove(turn.entry_id)

    async def _enforce_session_cap(self) -> None:
        excess = len(self._sessions) - max(1, self._config.max_sessions)
        if excess <= 0:
            return
        archived = sorted(
            (s for s in self._sessions.values() if s.id != self._current.id),
            key=lambda s: s.last_activity,
        )
        for session in archived[:excess]:
            await self._drop(session)
            logger.info("Dropped archived session %s (%d turns)", session.id, len(session.turns))

    # -- write --

    async def add_exchange(self, user: str, assistant: str) -> Turn:
        """Record one exchange in the current session and index it.

        The turn is kept even when embedding fails; the failure is
        re-raised with ``record_id`` naming the stored turn.
        """
        async with self._lock:
            session = self._current
            turn = session.append_turn(user, assistant, self._clock())

        try:
            await self._index_turn(session, turn)
        except EmbeddingError as exc:
            record_id = turn_record_id(session.id, turn.index)
            logger.warning("Turn %s stored without embedding: %s", record_id, exc)
            raise type(exc)(str(exc), record_id=record_id) from exc

        await emit_event(
            self._audit,
            AuditEventType.EXCHANGE_RECORDED,
            session_id=session.id,
            turn_index=turn.index,
            entry_id=turn.entry_id,
        )
        return turn

    async def _index_turn(self, session: Session, turn: Turn) -> None:
        text = turn.combined_text()
        vector = await embed_text(self._embedder, text, self._store.cache)
        if session.id not in self._sessions:
            return
        entry = MemoryEntry(
            text=text,
            embedding=vector,
            kind=EpisodicKind(session_id=session.id, turn_index=turn.index),
            timestamp=turn.timestamp,
            metadata={"session_id": session.id, "persona": session.persona_name},
        )
        await self._store.add(entry)
        turn.entry_id = entry.id

    async def retry_pending(self) -> int:
        """Embed turns whose earlier embedding failed.  Stops at the first failure."""
        indexed = 0
        for session in self.sessions():
            for turn in session.pending_turns():
                try:
                    await self._index_turn(session, turn)
                except EmbeddingError as exc:
                    logger.info("Pending turn retry stopped: %s", exc)
                    return indexed
                indexed += 1
        return indexed

    # -- read --

    async def recall_similar(
        self,
        query: str,
        top_k: int = 5,
        session_id: str | None = None,
    ) -> list[EpisodeHit]:
        """Rank past exchanges against *query*, optionally within one session.

        Empty memory yields ``[]``.
        """
        if top_k <= 0 or len(self._store) == 0:
            return []
        vector = await embed_text(self._embedder, query, self._store.cache)
        try:
            hits = await self._store.search(vector, top_k, EntryFilter.episodic(session_id))
        except EmptyStore:
            return []

        results: list[EpisodeHit] = []
        for hit in hits:
            if hit.score < self._config.recall_min_similarity:
                continue
            kind = hit.entry.kind
            if not isinstance(kind, EpisodicKind):
                continue
            results.append(
                EpisodeHit(
                    text=self.format_snippet(hit.entry.text, hit.score),
                    score=hit.score,
                    session_id=kind.session_id,
                    turn_index=kind.turn_index,
                    entry_id=hit.entry.id,
                )
            )
        return results

    def session_dialogues(self, session_id: str, limit: int | None = None) -> list[str]:
        """A session's turns in order as ``Turn N: ...`` lines, at most *limit*."""
        session = self._sessions.get(session_id)
        if session is None:
            return []
        turns = session.turns if limit is None else session.turns[: max(0, limit)]
        return [
            f"Turn {turn.index}: User: {turn.user} | Assistant: {turn.assistant}"
            for turn in turns
        ]

    def format_snippet(self, text: str, score: float) -> str:
        body = _truncate(text.replace("\n", " | "), self._config.snippet_max_chars)
        return f"[Relevance: {max(score, 0.0) * 100:.0f}%] {body}"

    def recent_dialogue(self, max_turns: int | None = None, max_chars: int | None = None) -> str:
        """The current session's last turns as a ``User:``/``Assistant:`` block.

        Oldest turns are dropped first when the block exceeds *max_chars*.
        """
        max_turns = self._config.context_max_turns if max_turns is None else max_turns
        max_chars = self._config.context_max_chars if max_chars is None else max_chars
        limit = self._config.snippet_max_chars

        blocks: list[str] = []
        total = 0
        for turn in reversed(self._current.last_turns(max_turns)):
            block = (
                f"User: {_truncate(turn.user, limit)}\n"
                f"Assistant: {_truncate(turn.assistant, limit)}"
            )
            if blocks and total + len(block) + 1 > max_chars:
                break
            blocks.append(block)
            total += len(block) + 1
        return "\n".join(reversed(blocks))

    # -- state --

    def export_state(self) -> dict[str, Any]:
        return {
            "version": 1,
            "current_session_id": self._current.id,
            "sessions": [s.model_dump(mode="json") for s in self.sessions()],
        }

    def restore_state(self, state: dict[str, Any]) -> int:
        """Load sessions from *state*; returns how many were restored.

        Turns whose entry is no longer in the store become pending again.
        """
        restored: dict[str, Session] = {}
        for raw in state.get("sessions", []):
            try:
                session = Session.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed session record")
                continue
            for turn in session.turns:
                if turn.entry_id is not None and turn.entry_id not in self._store:
                    turn.entry_id = None
            restored[session.id] = session
        if not restored:
            return 0

        self._sessions = restored
        current = restored.get(state.get("current_session_id", ""))
        if current is None:
            current = max(restored.values(), key=lambda s: s.last_activity)
        self._current = current
        return len(restored)

    async def import_sessions(self, sessions: list[Session]) -> int:
        """Merge sessions from a snapshot; ids already present are skipped.

        Imported turns start pending and are embedded by ``retry_pending``.
        """
        added = 0
        async with self._lock:
            for session in sessions:
                if session.id in self._sessions:
                    continue
                session = session.model_copy(deep=True)
                for turn in session.turns:
                    turn.entry_id = None
                self._sessions[session.id] = session
                added += 1
            await self._enforce_session_cap()
        return added
