# contextloop/storage/session_store.py
"""
Session store interface for sessions, messages and checkpoints.

The store keeps rows the way relational tables would hold them: sessions
with an optional serialized context snapshot, the messages of each session
with their token counts and cost, and checkpoints with the context snapshot
and the metadata (messages and file states included) serialized as JSON
text. Deleting a session deletes its messages.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from contextloop.exceptions import SessionNotFound


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:16]}"


# =============================================================================
# Models
# =============================================================================


class SessionRecord(BaseModel):
    """
    One persisted session row.

    ``total_tokens`` and ``total_cost`` are derived from the session's
    messages whenever the row is read; values written with the row are
    ignored.
    """

    id: str = Field(default_factory=generate_session_id)
    name: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    context_snapshot_json: str = Field(default="", description="Serialized ContextSnapshot, empty when never saved")
    metadata_json: str = "{}"
    total_tokens: int = 0
    total_cost: float = 0.0


class MessageRecord(BaseModel):
    """One persisted transcript message with its usage."""

    session_id: str
    role: str
    content: str = ""
    name: str = Field(default="", description="Tool name for tool messages")
    tokens_input: int = Field(default=0, ge=0)
    tokens_output: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)
    created_at: datetime = Field(default_factory=_utcnow)


class CheckpointRecord(BaseModel):
    """One persisted checkpoint row."""

    id: str
    session_id: str
    name: str
    description: str = ""
    created_at: datetime
    snapshot_json: str = Field(..., description="Serialized ContextSnapshot")
    metadata_json: str = Field(default="{}", description="Serialized messages, file states and metadata")


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class SessionStore(Protocol):
    """Durable record storage addressable by session id and checkpoint id."""

    # Sessions

    async def create_session(self, record: SessionRecord) -> SessionRecord: ...

    async def get_session(self, session_id: str) -> SessionRecord | None: ...

    async def list_sessions(self) -> list[SessionRecord]:
        """All sessions, most recently updated first."""
        ...

    async def delete_session(self, session_id: str) -> int:
        """Delete a session and its messages; returns the number of session rows affected."""
        ...

    async def update_session_context(
        self,
        session_id: str,
        snapshot_json: str,
        updated_at: datetime | None = None,
    ) -> int: ...

    # Messages

    async def save_message(self, record: MessageRecord) -> None:
        """Append a message; raises SessionNotFound when the session does not exist."""
        ...

    async def get_messages(self, session_id: str) -> list[MessageRecord]:
        """Messages for a session in the order they were saved."""
        ...

    # Checkpoints

    async def save_checkpoint(self, record: CheckpointRecord) -> None: ...

    async def get_checkpoint(self, checkpoint_id: str) -> CheckpointRecord | None: ...

    async def list_checkpoints(self, session_id: str) -> list[CheckpointRecord]:
        """Records for a session, newest first."""
        ...

    async def delete_checkpoint(self, checkpoint_id: str) -> int:
        """Delete by id and return the number of rows affected."""
        ...


# =============================================================================
# Implementations
# =============================================================================


class InMemorySessionStore(BaseModel):
    """
    In-memory session store for testing/development.

    Not persistent - records are lost when the process exits. Records are
    held as JSON so callers never share objects with the store.
    """

    sessions: dict[str, str] = Field(default_factory=dict)
    messages: dict[str, list[str]] = Field(default_factory=dict)
    records: dict[str, str] = Field(default_factory=dict)
    sequence: dict[str, int] = Field(default_factory=dict)
    counter: int = Field(default=0)

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session(self, record: SessionRecord) -> SessionRecord:
        if record.id in self.sessions:
            raise ValueError(f"session already exists: {record.id}")
        stored = record.model_copy(update={"total_tokens": 0, "total_cost": 0.0})
        self.sessions[record.id] = stored.model_dump_json()
        self.messages.setdefault(record.id, [])
        return stored

    async def get_session(self, session_id: str) -> SessionRecord | None:
        data = self.sessions.get(session_id)
        if data is None:
            return None
        return self._with_totals(SessionRecord.model_validate_json(data))

    async def list_sessions(self) -> list[SessionRecord]:
        sessions = [self._with_totals(SessionRecord.model_validate_json(data)) for data in self.sessions.values()]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    async def delete_session(self, session_id: str) -> int:
        self.messages.pop(session_id, None)
        if self.sessions.pop(session_id, None) is None:
            return 0
        return 1

    async def update_session_context(
        self,
        session_id: str,
        snapshot_json: str,
        updated_at: datetime | None = None,
    ) -> int:
        data = self.sessions.get(session_id)
        if data is None:
            return 0
        session = SessionRecord.model_validate_json(data)
        session.context_snapshot_json = snapshot_json
        session.updated_at = updated_at or _utcnow()
        self.sessions[session_id] = session.model_dump_json()
        return 1

    # =========================================================================
    # Messages
    # =========================================================================

    async def save_message(self, record: MessageRecord) -> None:
        data = self.sessions.get(record.session_id)
        if data is None:
            raise SessionNotFound(record.session_id)
        self.messages.setdefault(record.session_id, []).append(record.model_dump_json())

        session = SessionRecord.model_validate_json(data)
        session.updated_at = max(session.updated_at, record.created_at)
        self.sessions[record.session_id] = session.model_dump_json()

    async def get_messages(self, session_id: str) -> list[MessageRecord]:
        return [MessageRecord.model_validate_json(data) for data in self.messages.get(session_id, [])]

    def _with_totals(self, session: SessionRecord) -> SessionRecord:
        tokens = 0
        cost = 0.0
        for data in self.messages.get(session.id, []):
            message = MessageRecord.model_validate_json(data)
            tokens += message.tokens_input + message.tokens_output
            cost += message.cost
        session.total_tokens = tokens
        session.total_cost = cost
        return session

    # =========================================================================
    # Checkpoints
    # =========================================================================

    async def save_checkpoint(self, record: CheckpointRecord) -> None:
        self.counter += 1
        self.records[record.id] = record.model_dump_json()
        self.sequence.setdefault(record.id, self.counter)

    async def get_checkpoint(self, checkpoint_id: str) -> CheckpointRecord | None:
        data = self.records.get(checkpoint_id)
        if data is None:
            return None
        return CheckpointRecord.model_validate_json(data)

    async def list_checkpoints(self, session_id: str) -> list[CheckpointRecord]:
        records = [CheckpointRecord.model_validate_json(data) for data in self.records.values()]
        matching = [r for r in records if r.session_id == session_id]
        # Same timestamp: later insert counts as newer
        matching.sort(key=lambda r: (r.created_at, self.sequence.get(r.id, 0)), reverse=True)
        return matching

    async def delete_checkpoint(self, checkpoint_id: str) -> int:
        if checkpoint_id not in self.records:
            return 0
        del self.records[checkpoint_id]
        self.sequence.pop(checkpoint_id, None)
        return 1

    def clear(self) -> None:
        self.sessions.clear()
        self.messages.clear()
        self.records.clear()
        self.sequence.clear()
        self.counter = 0
