# contextloop/context/checkpoint.py
"""
CheckpointManager - durable named snapshots of context and messages.

Checkpoints are written through a SessionStore. Restoring a checkpoint only
loads it; applying it to a live ContextManager is the caller's decision
(``await manager.restore_snapshot(checkpoint.context)``).

Auto-checkpoints taken before destructive operations schedule retention
cleanup as a supervised task. Requests for the same session are serialized:
a new auto-checkpoint waits for the previous cleanup before it is created,
and ``wait_for_cleanup`` lets callers await the outstanding task. The
per-session lock is dropped once no request holds or waits on it;
``release_session`` clears the rest when a session ends.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter

from contextloop import config as defaults
from contextloop.exceptions import CheckpointNotFound, ContextLoopError, ErrorCode
from contextloop.execution.models import Message
from contextloop.storage.session_store import CheckpointRecord, SessionStore

from .models import Checkpoint, ContextSnapshot

_messages_adapter = TypeAdapter(list[Message])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_checkpoint_id() -> str:
    return f"ckpt_{uuid.uuid4().hex[:16]}"


class CheckpointManager:
    """Creates, lists, restores and prunes checkpoints for sessions."""

    def __init__(
        self,
        store: SessionStore,
        logger: logging.Logger | None = None,
        auto_keep_last: int = defaults.DEFAULT_AUTO_CHECKPOINT_KEEP_LAST,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)
        self.auto_keep_last = auto_keep_last
        self._clock = clock or _utcnow
        self._auto_locks: dict[str, asyncio.Lock] = {}
        self._auto_users: dict[str, int] = {}
        self._cleanup_tasks: dict[str, asyncio.Task[int]] = {}

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_checkpoint(
        self,
        session_id: str,
        name: str,
        description: str,
        snapshot: ContextSnapshot,
        messages: Sequence[Message],
        file_states: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            id=generate_checkpoint_id(),
            session_id=session_id,
            name=name,
            description=description,
            created_at=self._clock(),
            context=snapshot.model_copy(deep=True),
            messages=[m.model_copy(deep=True) for m in messages],
            file_states=dict(file_states or {}),
            metadata=dict(metadata or {}),
        )

        try:
            record = self._to_record(checkpoint)
            await self._store.save_checkpoint(record)
        except Exception as e:
            raise ContextLoopError(ErrorCode.STORAGE, "failed to create checkpoint", cause=e) from e

        self._logger.info(
            "Checkpoint created: %s (session=%s, name=%s, tokens=%d)",
            checkpoint.id,
            session_id,
            name,
            snapshot.total_tokens,
        )
        return checkpoint

    async def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        record = await self._store.get_checkpoint(checkpoint_id)
        if record is None:
            raise CheckpointNotFound(checkpoint_id)
        return self._from_record(record)

    async def list_checkpoints(self, session_id: str) -> list[Checkpoint]:
        """Checkpoints for a session, newest first."""
        records = await self._store.list_checkpoints(session_id)
        return [self._from_record(record) for record in records]

    async def restore_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """Load a checkpoint for restoring. The live context is not touched."""
        checkpoint = await self.get_checkpoint(checkpoint_id)
        self._logger.info(
            "Checkpoint restored: %s (session=%s, name=%s)",
            checkpoint_id,
            checkpoint.session_id,
            checkpoint.name,
        )
        return checkpoint

    async def delete_checkpoint(self, checkpoint_id: str) -> None:
        rows = await self._store.delete_checkpoint(checkpoint_id)
        if rows == 0:
            raise CheckpointNotFound(checkpoint_id)
        self._logger.info("Checkpoint deleted: %s", checkpoint_id)

    async def cleanup_old_checkpoints(
        self,
        session_id: str,
        keep_last: int = defaults.DEFAULT_CHECKPOINT_KEEP_LAST,
    ) -> int:
        """
        Delete every checkpoint beyond the newest ``keep_last``.

        A checkpoint that fails to delete is logged and skipped. Returns the
        number actually deleted.
        """
        if keep_last <= 0:
            keep_last = defaults.DEFAULT_CHECKPOINT_KEEP_LAST

        records = await self._store.list_checkpoints(session_id)
        if len(records) <= keep_last:
            return 0

        deleted = 0
        for record in records[keep_last:]:
            try:
                await self.delete_checkpoint(record.id)
            except Exception as e:
                self._logger.warning("Failed to delete old checkpoint %s: %s", record.id, e)
                continue
            deleted += 1

        self._logger.info(
            "Old checkpoints cleaned up for session %s: deleted=%d kept=%d",
            session_id,
            deleted,
            keep_last,
        )
        return deleted

    # =========================================================================
    # Auto-checkpoints
    # =========================================================================

    async def create_auto_checkpoint(
        self,
        session_id: str,
        operation: str,
        snapshot: ContextSnapshot,
        messages: Sequence[Message],
    ) -> Checkpoint:
        """
        Checkpoint before a destructive operation, then prune in the background.

        The checkpoint is named ``auto_<operation>_<unix seconds>``.
        """
        lock = self._auto_locks.setdefault(session_id, asyncio.Lock())
        self._auto_users[session_id] = self._auto_users.get(session_id, 0) + 1
        try:
            async with lock:
                await self.wait_for_cleanup(session_id)

                now = self._clock()
                checkpoint = await self.create_checkpoint(
                    session_id,
                    f"auto_{operation}_{int(now.timestamp())}",
                    f"Automatic checkpoint before {operation}",
                    snapshot,
                    messages,
                    metadata={"auto": True, "operation": operation},
                )

                self._cleanup_tasks[session_id] = asyncio.create_task(
                    self._run_cleanup(session_id),
                    name=f"checkpoint-cleanup-{session_id}",
                )
        finally:
            # Last holder or waiter drops the session's lock
            self._auto_users[session_id] -= 1
            if self._auto_users[session_id] == 0:
                del self._auto_users[session_id]
                del self._auto_locks[session_id]
        return checkpoint

    async def _run_cleanup(self, session_id: str) -> int:
        try:
            return await self.cleanup_old_checkpoints(session_id, self.auto_keep_last)
        except Exception as e:
            self._logger.warning("Failed to cleanup old checkpoints for session %s: %s", session_id, e)
            return 0

    def cleanup_task(self, session_id: str) -> asyncio.Task[int] | None:
        """Handle of the most recent retention cleanup for a session."""
        return self._cleanup_tasks.get(session_id)

    async def wait_for_cleanup(self, session_id: str) -> int | None:
        """
        Wait for the session's outstanding cleanup.

        Returns the number of checkpoints it deleted, or None when there was
        no task or it was cancelled.
        """
        task = self._cleanup_tasks.get(session_id)
        if task is None:
            return None
        await asyncio.wait({task})
        if self._cleanup_tasks.get(session_id) is task:
            del self._cleanup_tasks[session_id]
        if task.cancelled():
            return None
        return task.result()

    async def release_session(self, session_id: str) -> None:
        """Finish every outstanding cleanup for a session ending; nothing is kept for it afterwards."""
        while session_id in self._cleanup_tasks:
            await self.wait_for_cleanup(session_id)
        self._logger.debug("Checkpoint bookkeeping released for session %s", session_id)

    async def aclose(self) -> None:
        """Cancel outstanding cleanup tasks."""
        tasks = list(self._cleanup_tasks.values())
        self._cleanup_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Serialization
    # =========================================================================

    def _to_record(self, checkpoint: Checkpoint) -> CheckpointRecord:
        metadata = {
            "messages": _messages_adapter.dump_json(checkpoint.messages).decode("utf-8"),
            "file_states": checkpoint.file_states,
            "context_tokens": checkpoint.context.total_tokens,
            "metadata": checkpoint.metadata,
        }
        return CheckpointRecord(
            id=checkpoint.id,
            session_id=checkpoint.session_id,
            name=checkpoint.name,
            description=checkpoint.description,
            created_at=checkpoint.created_at,
            snapshot_json=checkpoint.context.model_dump_json(),
            metadata_json=json.dumps(metadata, default=str),
        )

    def _from_record(self, record: CheckpointRecord) -> Checkpoint:
        try:
            snapshot = ContextSnapshot.model_validate_json(record.snapshot_json)
        except ValueError as e:
            raise ContextLoopError(ErrorCode.STORAGE, "failed to decode checkpoint snapshot", cause=e) from e

        messages: list[Message] = []
        file_states: dict[str, str] = {}
        metadata: dict[str, Any] = {}
        try:
            stored = json.loads(record.metadata_json or "{}")
        except ValueError as e:
            self._logger.warning("Failed to decode metadata for checkpoint %s: %s", record.id, e)
            stored = {}

        raw_messages = stored.get("messages")
        if raw_messages:
            try:
                messages = _messages_adapter.validate_json(raw_messages)
            except ValueError as e:
                self._logger.warning("Failed to decode messages for checkpoint %s: %s", record.id, e)
        file_states = dict(stored.get("file_states") or {})
        metadata = dict(stored.get("metadata") or {})

        return Checkpoint(
            id=record.id,
            session_id=record.session_id,
            name=record.name,
            description=record.description,
            created_at=record.created_at,
            context=snapshot,
            messages=messages,
            file_states=file_states,
            metadata=metadata,
        )
