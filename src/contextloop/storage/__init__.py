# contextloop/storage/__init__.py
"""Storage interfaces and in-memory reference implementations."""

from contextloop.storage.session_store import (
    CheckpointRecord,
    InMemorySessionStore,
    MessageRecord,
    SessionRecord,
    SessionStore,
    generate_session_id,
)

__all__ = [
    "CheckpointRecord",
    "InMemorySessionStore",
    "MessageRecord",
    "SessionRecord",
    "SessionStore",
    "generate_session_id",
]
