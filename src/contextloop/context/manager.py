# contextloop/context/manager.py
"""
ContextManager - owner of the per-session working sets.

Exposes add/get/optimize/snapshot/restore over in-memory working sets and
keeps per-session metrics current after every mutation.

Each session has its own read/write lock: reads (``get_context``,
``get_metrics``, ``create_snapshot``) share it, mutations hold it
exclusively and run to completion, optimization included. The registry of
sessions is guarded by a separate short-lived lock, so unrelated sessions
never serialize behind each other.

Usage::

    manager = ContextManager(OptimizationConfig(max_tokens=8000))
    await manager.add_item("sess_1", ContextItem(type=ContextItemType.USER_INTENT, content="Fix the bug"))
    items = await manager.get_context("sess_1", max_tokens=4000)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from contextloop.exceptions import ContextLoopError, ErrorCode, SessionNotFound, wrap

from .locks import AsyncRWLock
from .models import ContextItem, ContextMetrics, ContextSnapshot, ContextTier, OptimizationConfig
from .scoring import rank_items, total_tokens
from .strategies import build_strategy
from .summarizer import Summarizer

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_item_id() -> str:
    return f"item_{uuid.uuid4().hex[:12]}"


class _SessionState:
    """Working set, policy and lock for one session."""

    __slots__ = ("config", "items", "lock", "metrics")

    def __init__(self, config: OptimizationConfig) -> None:
        self.config = config
        self.items: list[ContextItem] = []
        self.lock = AsyncRWLock()
        self.metrics = ContextMetrics(max_size=config.max_tokens)


class ContextManager:
    """Per-session working-set owner with automatic optimization."""

    def __init__(
        self,
        config: OptimizationConfig | None = None,
        summarizer: Summarizer | None = None,
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or OptimizationConfig()
        self._summarizer = summarizer
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock or _utcnow
        self._sessions: dict[str, _SessionState] = {}
        self._registry_lock = asyncio.Lock()

    # =========================================================================
    # Session registry
    # =========================================================================

    async def _get_or_create(self, session_id: str) -> _SessionState:
        async with self._registry_lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = _SessionState(self.config)
                self._sessions[session_id] = state
            return state

    def _require(self, session_id: str) -> _SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFound(session_id)
        return state

    async def configure_session(self, session_id: str, config: OptimizationConfig) -> None:
        """Set the optimization policy used for one session."""
        while True:
            state = await self._get_or_create(session_id)
            async with state.lock.write():
                if self._sessions.get(session_id) is not state:
                    continue
                state.config = config
                self._update_metrics(state)
                return

    def session_config(self, session_id: str) -> OptimizationConfig:
        state = self._sessions.get(session_id)
        return state.config if state else self.config

    def list_sessions(self) -> list[str]:
        return list(self._sessions)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add_item(self, session_id: str, item: ContextItem) -> ContextItem:
        """
        Append an item to the session's working set.

        Missing ids, access stamps and relevance are filled in. When
        auto-optimization is on and utilization reaches the threshold the
        session is optimized before returning; a failed optimization is
        logged and the add still succeeds.
        """
        updates: dict[str, object] = {}
        if not item.id:
            updates["id"] = generate_item_id()
        if item.last_accessed is None:
            updates["last_accessed"] = self._clock()
        if item.relevance is None:
            updates["relevance"] = 1.0
        stored = item.model_copy(update=updates, deep=True)

        while True:
            state = await self._get_or_create(session_id)
            async with state.lock.write():
                # Cleared while we waited: add to the session's new state instead
                if self._sessions.get(session_id) is not state:
                    continue
                await self._append_locked(session_id, state, stored)
                return stored.model_copy(deep=True)

    async def _append_locked(self, session_id: str, state: _SessionState, stored: ContextItem) -> None:
        state.items.append(stored)
        metrics = self._update_metrics(state)
        self._logger.debug(
            "Added item %s (%s, %d tokens) to session %s",
            stored.id,
            stored.type.value,
            stored.token_count,
            session_id,
        )

        if state.config.auto_optimize and metrics.utilization >= state.config.optimize_threshold:
            self._logger.info(
                "Auto-optimization triggered for session %s (utilization %.1f%%)",
                session_id,
                metrics.utilization * 100,
            )
            try:
                await self._optimize_locked(session_id, state)
            except ContextLoopError as e:
                self._logger.warning("Auto-optimization failed for session %s: %s", session_id, e)

    async def optimize_context(self, session_id: str) -> ContextMetrics:
        """Run the session's strategy and replace the working set with its output."""
        state = self._require(session_id)
        async with state.lock.write():
            if self._sessions.get(session_id) is not state:
                raise SessionNotFound(session_id)
            return await self._optimize_locked(session_id, state)

    async def _optimize_locked(self, session_id: str, state: _SessionState) -> ContextMetrics:
        config = state.config
        before = total_tokens(state.items)
        self._logger.info("Optimizing context for session %s (strategy=%s)", session_id, config.strategy.value)

        strategy = build_strategy(config.strategy, self._summarizer)
        try:
            optimized = await strategy.optimize(state.items, config, self._clock())
        except Exception as e:
            raise wrap(e, ErrorCode.INTERNAL, "optimization failed") from e

        state.items = optimized
        metrics = self._update_metrics(state)
        metrics.last_optimized = self._clock()
        metrics.optimization_runs += 1

        self._logger.info(
            "Context optimized for session %s: %d -> %d tokens (efficiency %.1f%%)",
            session_id,
            before,
            metrics.current_size,
            metrics.efficiency * 100,
        )
        return metrics.model_copy()

    async def restore_snapshot(self, snapshot: ContextSnapshot) -> None:
        """Replace the session's working set with a copy of the snapshot's items."""
        while True:
            state = await self._get_or_create(snapshot.session_id)
            async with state.lock.write():
                if self._sessions.get(snapshot.session_id) is not state:
                    continue
                state.items = [item.model_copy(deep=True) for item in snapshot.items]
                self._update_metrics(state)
                break
        self._logger.info(
            "Context restored from snapshot for session %s (%d tokens)",
            snapshot.session_id,
            snapshot.total_tokens,
        )

    async def clear_session(self, session_id: str) -> bool:
        """Drop all state for a session. Returns False when there was none."""
        state = self._sessions.get(session_id)
        if state is None:
            return False
        async with state.lock.write():
            async with self._registry_lock:
                if self._sessions.get(session_id) is state:
                    del self._sessions[session_id]
            state.items = []
        self._logger.info("Session context cleared: %s", session_id)
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_context(self, session_id: str, max_tokens: int | None = None) -> list[ContextItem]:
        """
        Return the best items that fit in ``max_tokens``.

        Items are taken in descending composite score and selection stops at
        the first item that would overflow the budget. Only the returned
        items get their access time refreshed. An unknown session yields an
        empty list.
        """
        state = self._sessions.get(session_id)
        if state is None:
            return []

        async with state.lock.read():
            budget = state.config.max_tokens if max_tokens is None else max_tokens
            now = self._clock()
            selected: list[ContextItem] = []
            used = 0
            for item in rank_items(state.items, now):
                if used + item.token_count > budget:
                    break
                selected.append(item)
                used += item.token_count

            # Stamping is synchronous, so no other task observes a partial update
            for item in selected:
                item.last_accessed = now

            return [item.model_copy(deep=True) for item in selected]

    async def get_items(self, session_id: str) -> list[ContextItem]:
        """Copies of the full working set in insertion order."""
        state = self._require(session_id)
        async with state.lock.read():
            return [item.model_copy(deep=True) for item in state.items]

    async def get_metrics(self, session_id: str) -> ContextMetrics:
        state = self._require(session_id)
        async with state.lock.read():
            return state.metrics.model_copy()

    async def create_snapshot(self, session_id: str) -> ContextSnapshot:
        state = self._require(session_id)
        async with state.lock.read():
            items = [item.model_copy(deep=True) for item in state.items]
            return ContextSnapshot(
                session_id=session_id,
                timestamp=self._clock(),
                items=items,
                total_tokens=total_tokens(items),
                optimization_ratio=state.metrics.efficiency,
            )

    # =========================================================================
    # Rendering
    # =========================================================================

    @staticmethod
    def render(items: Sequence[ContextItem]) -> str:
        """Format items as a plain-text block for a system prompt."""
        sections = []
        for item in items:
            sections.append(f"[{item.type.value}] {item.content}")
        return "\n\n".join(sections)

    # =========================================================================
    # Internals
    # =========================================================================

    def _update_metrics(self, state: _SessionState) -> ContextMetrics:
        previous = state.metrics
        max_size = state.config.max_tokens
        current = total_tokens(state.items)
        tiers = {tier: 0 for tier in ContextTier}
        for item in state.items:
            tiers[item.tier] += item.token_count

        state.metrics = ContextMetrics(
            current_size=current,
            max_size=max_size,
            hot_tier_size=tiers[ContextTier.HOT],
            warm_tier_size=tiers[ContextTier.WARM],
            cold_tier_size=tiers[ContextTier.COLD],
            efficiency=1.0 - current / max_size if current < max_size else 0.0,
            item_count=len(state.items),
            last_optimized=previous.last_optimized,
            optimization_runs=previous.optimization_runs,
        )
        return state.metrics
