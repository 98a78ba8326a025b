# contextloop/context/exporter.py
"""
Session export and import.

An export bundles session metadata, messages, the context snapshot and
optionally checkpoints, file contents and configuration into one JSON
document. Shareable snapshots drop files and configuration and strip
credentials from the session metadata.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from contextloop.exceptions import ContextLoopError, ErrorCode, validation_error
from contextloop.execution.models import Message

from .models import Checkpoint, ContextSnapshot, estimate_tokens

if TYPE_CHECKING:
    from .manager import ContextManager

EXPORT_VERSION = "1.0"
SENSITIVE_METADATA_KEYS = ("api_key", "token", "password", "secret")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Models
# =============================================================================


class SessionExportData(BaseModel):
    id: str
    name: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    total_tokens: int = 0
    total_cost: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionExport(BaseModel):
    version: str = EXPORT_VERSION
    exported_at: datetime = Field(default_factory=_utcnow)
    session: SessionExportData
    messages: list[Message] = Field(default_factory=list)
    context: ContextSnapshot | None = None
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    files: dict[str, str] = Field(default_factory=dict, description="path -> content")
    config: dict[str, Any] = Field(default_factory=dict)


class ExportOptions(BaseModel):
    include_messages: bool = True
    include_context: bool = True
    include_checkpoints: bool = False
    include_files: bool = False
    include_config: bool = False
    file_paths: list[str] = Field(default_factory=list)


# =============================================================================
# Exporter
# =============================================================================


class SessionExporter:
    """Builds, writes and reads session exports."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    def export_session(
        self,
        session_id: str,
        snapshot: ContextSnapshot | None,
        messages: Sequence[Message],
        options: ExportOptions | None = None,
        *,
        name: str = "",
        metadata: dict[str, Any] | None = None,
        checkpoints: Sequence[Checkpoint] = (),
        config: dict[str, Any] | None = None,
        total_cost: float = 0.0,
    ) -> SessionExport:
        options = options or ExportOptions()
        export = SessionExport(
            session=SessionExportData(
                id=session_id,
                name=name,
                total_cost=total_cost,
                metadata=dict(metadata or {}),
            )
        )

        if options.include_messages:
            export.messages = [m.model_copy(deep=True) for m in messages]
            export.session.total_tokens = sum(estimate_tokens(m.content) for m in messages)

        if options.include_context and snapshot is not None:
            export.context = snapshot.model_copy(deep=True)
            export.session.total_tokens = snapshot.total_tokens

        if options.include_checkpoints:
            export.checkpoints = [cp.model_copy(deep=True) for cp in checkpoints]

        if options.include_files:
            for path in options.file_paths:
                try:
                    export.files[path] = Path(path).read_text(encoding="utf-8")
                except OSError as e:
                    self._logger.warning("Failed to read file %s for export: %s", path, e)

        if options.include_config and config:
            export.config = dict(config)

        self._logger.info(
            "Session exported: %s (messages=%d, files=%d, tokens=%d)",
            session_id,
            len(export.messages),
            len(export.files),
            export.session.total_tokens,
        )
        return export

    def export_to_file(self, export: SessionExport, path: str | Path) -> int:
        """Write the export as indented JSON. Returns the number of bytes written."""
        data = export.model_dump_json(indent=2)
        try:
            Path(path).write_text(data, encoding="utf-8")
        except OSError as e:
            raise ContextLoopError(ErrorCode.STORAGE, f"failed to write export file {path}", cause=e) from e

        self._logger.info("Session %s exported to %s (%d bytes)", export.session.id, path, len(data))
        return len(data)

    def import_from_file(self, path: str | Path) -> SessionExport:
        try:
            data = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ContextLoopError(ErrorCode.STORAGE, f"failed to read import file {path}", cause=e) from e

        try:
            export = SessionExport.model_validate_json(data)
        except ValueError as e:
            raise ContextLoopError(ErrorCode.VALIDATION, "failed to parse session export", cause=e) from e

        if export.version != EXPORT_VERSION:
            raise validation_error("version", f"unsupported export version: {export.version}")

        self._logger.info(
            "Session imported from %s: %s (messages=%d)",
            path,
            export.session.id,
            len(export.messages),
        )
        return export

    async def import_session(
        self,
        export: SessionExport,
        new_session_id: str | None = None,
        context_manager: ContextManager | None = None,
    ) -> ContextSnapshot | None:
        """
        Validate an export and return its snapshot keyed for the target session.

        The target is ``new_session_id`` when given, else the exported id.
        With a context manager the snapshot is also restored into it.
        """
        if not export.session.id:
            raise validation_error("session.id", "export missing session ID")

        target = new_session_id or export.session.id
        snapshot = None
        if export.context is not None:
            snapshot = export.context.model_copy(update={"session_id": target}, deep=True)
            if context_manager is not None:
                await context_manager.restore_snapshot(snapshot)

        self._logger.info(
            "Session import validated: %s -> %s (messages=%d)",
            export.session.id,
            target,
            len(export.messages),
        )
        return snapshot

    def create_shareable_snapshot(
        self,
        session_id: str,
        snapshot: ContextSnapshot | None,
        messages: Sequence[Message],
        *,
        name: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> SessionExport:
        """Export without files or config and with credentials removed."""
        export = self.export_session(
            session_id,
            snapshot,
            messages,
            ExportOptions(include_messages=True, include_context=True),
            name=name,
            metadata=metadata,
        )
        return self._anonymize(export)

    @staticmethod
    def _anonymize(export: SessionExport) -> SessionExport:
        session = export.session.model_copy(
            update={
                "metadata": {
                    key: value
                    for key, value in export.session.metadata.items()
                    if key not in SENSITIVE_METADATA_KEYS
                }
            }
        )
        return export.model_copy(update={"session": session, "files": {}, "config": {}})
