# tests/test_exporter.py
"""
Tests for session export and import.

Covers:
- Export option handling (messages, context, checkpoints, files, config)
- Writing and reading export files
- Version checks and malformed input
- Importing into a new session id and restoring into a ContextManager
- Shareable snapshots stripping credentials, files and config
"""

import json
from datetime import datetime, timezone

import pytest

from contextloop.context.exporter import EXPORT_VERSION, ExportOptions, SessionExporter
from contextloop.context.models import ContextItem, ContextItemType, ContextSnapshot
from contextloop.exceptions import ContextLoopError, ErrorCode
from contextloop.execution.models import Message

SESSION = "sess_1"
NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_snapshot(session_id: str = SESSION) -> ContextSnapshot:
    items = [
        ContextItem(id="intent", type=ContextItemType.USER_INTENT, content="Add a login page", relevance=1.0),
        ContextItem(id="plan", type=ContextItemType.PLAN, content="1. form 2. route 3. test", relevance=0.8),
    ]
    return ContextSnapshot(
        session_id=session_id,
        timestamp=NOW,
        items=items,
        total_tokens=sum(i.token_count for i in items),
    )


def _make_messages() -> list[Message]:
    return [Message.user("Add a login page"), Message.assistant("Done, see login.py")]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestExportSession:
    def test_defaults(self):
        snapshot = _make_snapshot()
        export = SessionExporter().export_session(SESSION, snapshot, _make_messages(), name="login work")

        assert export.version == EXPORT_VERSION
        assert export.session.id == SESSION
        assert export.session.name == "login work"
        assert export.messages == _make_messages()
        assert export.context == snapshot
        assert export.session.total_tokens == snapshot.total_tokens
        assert export.checkpoints == []
        assert export.files == {}
        assert export.config == {}

    def test_message_token_estimate_without_context(self):
        messages = _make_messages()
        export = SessionExporter().export_session(
            SESSION, None, messages, ExportOptions(include_context=False)
        )
        assert export.context is None
        assert export.session.total_tokens == len("Add a login page") // 4 + len("Done, see login.py") // 4

    def test_optional_sections(self, tmp_path):
        source = tmp_path / "login.py"
        source.write_text("def login(): ...\n", encoding="utf-8")
        options = ExportOptions(
            include_messages=False,
            include_files=True,
            include_config=True,
            file_paths=[str(source), str(tmp_path / "missing.py")],
        )

        export = SessionExporter().export_session(
            SESSION, _make_snapshot(), _make_messages(), options, config={"model": "claude-sonnet-4-5"}
        )

        assert export.messages == []
        assert export.files == {str(source): "def login(): ...\n"}
        assert export.config == {"model": "claude-sonnet-4-5"}


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class TestExportFiles:
    def test_round_trip(self, tmp_path):
        exporter = SessionExporter()
        export = exporter.export_session(SESSION, _make_snapshot(), _make_messages(), metadata={"project": "web"})
        path = tmp_path / "session.json"

        written = exporter.export_to_file(export, path)
        loaded = exporter.import_from_file(path)

        assert written == len(path.read_text(encoding="utf-8"))
        assert loaded.session.id == SESSION
        assert loaded.session.metadata == {"project": "web"}
        assert loaded.messages == export.messages
        assert loaded.context == export.context

    def test_unsupported_version(self, tmp_path):
        exporter = SessionExporter()
        data = json.loads(exporter.export_session(SESSION, None, []).model_dump_json())
        data["version"] = "9.9"
        path = tmp_path / "session.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(ContextLoopError) as exc_info:
            exporter.import_from_file(path)
        assert exc_info.value.is_code(ErrorCode.VALIDATION)
        assert "9.9" in str(exc_info.value)

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ContextLoopError) as exc_info:
            SessionExporter().import_from_file(path)
        assert exc_info.value.is_code(ErrorCode.VALIDATION)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ContextLoopError) as exc_info:
            SessionExporter().import_from_file(tmp_path / "absent.json")
        assert exc_info.value.is_code(ErrorCode.STORAGE)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class TestImportSession:
    @pytest.mark.asyncio
    async def test_rekeys_and_restores(self, context_manager):
        exporter = SessionExporter()
        export = exporter.export_session(SESSION, _make_snapshot(), _make_messages())

        snapshot = await exporter.import_session(export, "sess_copy", context_manager)

        assert snapshot.session_id == "sess_copy"
        assert [i.id for i in await context_manager.get_items("sess_copy")] == ["intent", "plan"]
        assert not context_manager.has_session(SESSION)

    @pytest.mark.asyncio
    async def test_keeps_id_without_override(self):
        exporter = SessionExporter()
        export = exporter.export_session(SESSION, _make_snapshot(), [])
        snapshot = await exporter.import_session(export)
        assert snapshot.session_id == SESSION

    @pytest.mark.asyncio
    async def test_no_context(self):
        exporter = SessionExporter()
        export = exporter.export_session(SESSION, None, _make_messages())
        assert await exporter.import_session(export) is None

    @pytest.mark.asyncio
    async def test_missing_session_id(self):
        exporter = SessionExporter()
        export = exporter.export_session("", None, [])
        with pytest.raises(ContextLoopError) as exc_info:
            await exporter.import_session(export)
        assert exc_info.value.is_code(ErrorCode.VALIDATION)


# ---------------------------------------------------------------------------
# Shareable snapshots
# ---------------------------------------------------------------------------


def test_shareable_snapshot_strips_sensitive_data():
    export = SessionExporter().create_shareable_snapshot(
        SESSION,
        _make_snapshot(),
        _make_messages(),
        metadata={"api_key": "sk-123", "token": "t", "password": "p", "secret": "s", "project": "web"},
    )

    assert export.session.metadata == {"project": "web"}
    assert export.files == {}
    assert export.config == {}
    assert export.messages == _make_messages()
    assert export.context is not None
