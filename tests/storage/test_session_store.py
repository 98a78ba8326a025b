# tests/storage/test_session_store.py
"""
Tests for the in-memory session store.

Covers checkpoint rows, session rows with totals derived from their
messages, message ordering and cascading session deletes.
"""

from datetime import datetime, timedelta, timezone

import pytest

from contextloop.exceptions import SessionNotFound
from contextloop.storage import CheckpointRecord, InMemorySessionStore, MessageRecord, SessionRecord, SessionStore

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _record(record_id: str, session_id: str = "s1", offset: int = 0) -> CheckpointRecord:
    return CheckpointRecord(
        id=record_id,
        session_id=session_id,
        name=f"checkpoint {record_id}",
        created_at=BASE_TIME + timedelta(seconds=offset),
        snapshot_json='{"session_id": "%s"}' % session_id,
    )


def _session(session_id: str = "s1", offset: int = 0) -> SessionRecord:
    at = BASE_TIME + timedelta(seconds=offset)
    return SessionRecord(id=session_id, name=f"session {session_id}", created_at=at, updated_at=at)


def _message(session_id: str = "s1", content: str = "hi", offset: int = 0, **usage) -> MessageRecord:
    return MessageRecord(
        session_id=session_id,
        role="user",
        content=content,
        created_at=BASE_TIME + timedelta(seconds=offset),
        **usage,
    )


class TestInMemorySessionStore:
    """Tests for the InMemorySessionStore class."""

    @pytest.fixture
    def store(self):
        return InMemorySessionStore()

    def test_satisfies_protocol(self, store):
        assert isinstance(store, SessionStore)

    @pytest.mark.asyncio
    async def test_save_and_get(self, store):
        await store.save_checkpoint(_record("a"))

        retrieved = await store.get_checkpoint("a")
        assert retrieved is not None
        assert retrieved.name == "checkpoint a"
        assert retrieved.metadata_json == "{}"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get_checkpoint("missing") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        await store.save_checkpoint(_record("a"))

        first = await store.get_checkpoint("a")
        first.name = "changed"
        assert (await store.get_checkpoint("a")).name == "checkpoint a"

    @pytest.mark.asyncio
    async def test_list_newest_first_per_session(self, store):
        await store.save_checkpoint(_record("old", offset=0))
        await store.save_checkpoint(_record("new", offset=10))
        await store.save_checkpoint(_record("other", session_id="s2", offset=5))

        listed = await store.list_checkpoints("s1")
        assert [r.id for r in listed] == ["new", "old"]
        assert await store.list_checkpoints("nobody") == []

    @pytest.mark.asyncio
    async def test_same_timestamp_later_insert_first(self, store):
        await store.save_checkpoint(_record("first"))
        await store.save_checkpoint(_record("second"))

        assert [r.id for r in await store.list_checkpoints("s1")] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_delete_reports_rows(self, store):
        await store.save_checkpoint(_record("a"))

        assert await store.delete_checkpoint("a") == 1
        assert await store.delete_checkpoint("a") == 0
        assert await store.get_checkpoint("a") is None

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.save_checkpoint(_record("a"))
        store.clear()

        assert store.records == {}
        assert store.counter == 0


class TestSessionRecords:
    """Session and message rows in the InMemorySessionStore."""

    @pytest.fixture
    def store(self):
        return InMemorySessionStore()

    def test_generated_ids(self):
        first, second = SessionRecord(name="a"), SessionRecord(name="b")
        assert first.id.startswith("session_")
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        created = await store.create_session(_session())

        retrieved = await store.get_session("s1")
        assert retrieved == created
        assert retrieved.name == "session s1"
        assert retrieved.context_snapshot_json == ""
        assert (retrieved.total_tokens, retrieved.total_cost) == (0, 0.0)
        assert await store.get_session("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        await store.create_session(_session())
        with pytest.raises(ValueError):
            await store.create_session(_session())

    @pytest.mark.asyncio
    async def test_messages_in_saved_order(self, store):
        await store.create_session(_session())
        await store.save_message(_message(content="first"))
        await store.save_message(
            MessageRecord(session_id="s1", role="tool", content="second", name="core.read", created_at=BASE_TIME)
        )

        messages = await store.get_messages("s1")
        assert [m.content for m in messages] == ["first", "second"]
        assert messages[1].name == "core.read"
        assert await store.get_messages("missing") == []

    @pytest.mark.asyncio
    async def test_totals_derived_from_messages(self, store):
        await store.create_session(_session())
        await store.save_message(_message(tokens_input=100, tokens_output=20, cost=0.01))
        await store.save_message(_message(tokens_input=50, tokens_output=30, cost=0.02))

        session = await store.get_session("s1")
        assert session.total_tokens == 200
        assert session.total_cost == pytest.approx(0.03)

    @pytest.mark.asyncio
    async def test_message_for_unknown_session(self, store):
        with pytest.raises(SessionNotFound):
            await store.save_message(_message(session_id="ghost"))

    @pytest.mark.asyncio
    async def test_save_message_touches_session(self, store):
        await store.create_session(_session())
        await store.save_message(_message(offset=60))

        assert (await store.get_session("s1")).updated_at == BASE_TIME + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_list_most_recently_updated_first(self, store):
        await store.create_session(_session("old", offset=0))
        await store.create_session(_session("new", offset=10))
        await store.save_message(_message(session_id="old", offset=20))

        assert [s.id for s in await store.list_sessions()] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_update_context(self, store):
        await store.create_session(_session())
        later = BASE_TIME + timedelta(minutes=5)

        assert await store.update_session_context("s1", '{"items": []}', later) == 1
        session = await store.get_session("s1")
        assert session.context_snapshot_json == '{"items": []}'
        assert session.updated_at == later
        assert await store.update_session_context("missing", "{}") == 0

    @pytest.mark.asyncio
    async def test_delete_cascades_messages(self, store):
        await store.create_session(_session())
        await store.save_message(_message())

        assert await store.delete_session("s1") == 1
        assert await store.delete_session("s1") == 0
        assert await store.get_session("s1") is None
        assert await store.get_messages("s1") == []

    @pytest.mark.asyncio
    async def test_clear_drops_sessions(self, store):
        await store.create_session(_session())
        store.clear()
        assert await store.list_sessions() == []
