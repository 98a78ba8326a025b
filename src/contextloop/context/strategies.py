# contextloop/context/strategies.py
"""
Optimization strategies for shrinking a session's working set.

Every strategy takes the current items and the session policy and returns a
replacement list. Inputs are never mutated; outputs are copies that keep the
working-set order (ranking decides membership and tier, not position).

Usage::

    from contextloop.context.strategies import build_strategy

    strategy = build_strategy(OptimizationStrategy.BALANCED, summarizer)
    items = await strategy.optimize(items, config)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import ContextItem, ContextItemType, OptimizationConfig, OptimizationStrategy
from .scoring import rank_items, should_preserve, total_tokens
from .summarizer import SummarizationRequest, Summarizer
from .tiering import TierAllocator

logger = logging.getLogger(__name__)

SUMMARIZE_MIN_TOKENS = 1000


def _copies(items: Sequence[ContextItem]) -> list[ContextItem]:
    return [item.model_copy(deep=True) for item in items]


def _keep(items: Sequence[ContextItem], kept: set[int]) -> list[ContextItem]:
    return [item.model_copy(deep=True) for item in items if id(item) in kept]


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class OptimizationStrategyImpl(Protocol):
    """Protocol for swappable optimization strategies."""

    @property
    def name(self) -> OptimizationStrategy: ...

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        """Return the replacement working set. Must not modify ``items``."""
        ...


# =============================================================================
# Implementations
# =============================================================================


class SelectivePruning:
    """
    Drop the lowest-ranked items until the set fits the target.

    Preserved items are kept unconditionally. Remaining items are admitted in
    rank order until the first one that would overflow the target; nothing
    after it is admitted. If preserved items still push the total over the
    target, admitted items are dropped lowest-ranked first, those below
    ``min_relevance`` before the rest.
    """

    @property
    def name(self) -> OptimizationStrategy:
        return OptimizationStrategy.SELECTIVE_PRUNING

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        target = config.target_tokens
        if total_tokens(items) <= target:
            return _copies(items)

        kept: set[int] = set()
        admitted: list[ContextItem] = []
        running = 0
        admitting = True

        for item in rank_items(items, now):
            if should_preserve(item, config):
                kept.add(id(item))
                running += item.token_count
                continue
            if admitting and running + item.token_count <= target:
                kept.add(id(item))
                admitted.append(item)
                running += item.token_count
                continue
            admitting = False
            logger.debug(
                "Pruning item %s (relevance=%.2f, tokens=%d)",
                item.id,
                item.effective_relevance,
                item.token_count,
            )

        if running > target:
            low = [item for item in admitted if item.effective_relevance < config.min_relevance]
            rest = [item for item in admitted if item.effective_relevance >= config.min_relevance]
            for item in [*reversed(low), *reversed(rest)]:
                if running <= target:
                    break
                kept.discard(id(item))
                running -= item.token_count
                logger.debug("Pruning admitted item %s to meet target", item.id)

        result = _keep(items, kept)
        logger.debug("Selective pruning kept %d of %d items (%d tokens)", len(result), len(items), running)
        return result


class AggressiveSummarization:
    """
    Replace large items with LLM summaries at half their size.

    Only non-preserved items over 1000 tokens that are not already summaries
    are touched. A failed summarization keeps the original item.
    """

    def __init__(self, summarizer: Summarizer | None = None):
        self._summarizer = summarizer

    @property
    def name(self) -> OptimizationStrategy:
        return OptimizationStrategy.AGGRESSIVE_SUMMARIZATION

    def is_candidate(self, item: ContextItem, config: OptimizationConfig) -> bool:
        return (
            not should_preserve(item, config)
            and item.token_count > SUMMARIZE_MIN_TOKENS
            and item.type != ContextItemType.SUMMARY
        )

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        if total_tokens(items) <= config.target_tokens:
            return _copies(items)
        if self._summarizer is None:
            logger.debug("No summarizer configured; skipping summarization")
            return _copies(items)

        result: list[ContextItem] = []
        for item in items:
            if not self.is_candidate(item, config):
                result.append(item.model_copy(deep=True))
                continue

            request = SummarizationRequest(
                content=item.content,
                type=item.type,
                target_tokens=item.token_count // 2,
                model=config.summarization_model,
            )
            try:
                summary = await self._summarizer.summarize(request)
            except Exception as e:
                logger.warning("Summarization failed for item %s: %s", item.id, e)
                result.append(item.model_copy(deep=True))
                continue

            result.append(
                item.with_content(
                    summary.summarized,
                    type=ContextItemType.SUMMARY,
                    metadata={
                        **item.metadata,
                        "original_tokens": item.token_count,
                        "original_type": item.type.value,
                        "compression": summary.compression,
                    },
                )
            )
        return result


class SemanticChunking:
    """
    Filter each item type independently.

    Within a type group items are ranked and kept when preserved or at or
    above ``min_relevance``. One group's size never affects another's.
    """

    @property
    def name(self) -> OptimizationStrategy:
        return OptimizationStrategy.SEMANTIC_CHUNKING

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        groups: dict[ContextItemType, list[ContextItem]] = {}
        for item in items:
            groups.setdefault(item.type, []).append(item)

        kept: set[int] = set()
        for item_type, group in groups.items():
            survivors = [
                item
                for item in rank_items(group, now)
                if should_preserve(item, config) or item.effective_relevance >= config.min_relevance
            ]
            kept.update(id(item) for item in survivors)
            logger.debug("Chunk %s: kept %d of %d", item_type.value, len(survivors), len(group))

        return _keep(items, kept)


class TieredEviction:
    """Relabel tiers only; no item is removed."""

    @property
    def name(self) -> OptimizationStrategy:
        return OptimizationStrategy.TIERED_EVICTION

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        result, _ = TierAllocator(config).allocate(items, now)
        return result


class BalancedOptimization:
    """
    Composite pipeline (default).

    Re-tier; then, while still over target, prune and finally summarize.
    Each stage works on the previous stage's output.
    """

    def __init__(self, summarizer: Summarizer | None = None):
        self._tiering = TieredEviction()
        self._pruning = SelectivePruning()
        self._summarization = AggressiveSummarization(summarizer)

    @property
    def name(self) -> OptimizationStrategy:
        return OptimizationStrategy.BALANCED

    async def optimize(
        self,
        items: Sequence[ContextItem],
        config: OptimizationConfig,
        now: datetime | None = None,
    ) -> list[ContextItem]:
        target = config.target_tokens
        result = await self._tiering.optimize(items, config, now)
        if total_tokens(items) <= target:
            return result

        if total_tokens(result) > target:
            result = await self._pruning.optimize(result, config, now)
        if total_tokens(result) > target:
            result = await self._summarization.optimize(result, config, now)
        return result


# =============================================================================
# Factory
# =============================================================================


def build_strategy(
    strategy: OptimizationStrategy | str,
    summarizer: Summarizer | None = None,
) -> OptimizationStrategyImpl:
    """Create the implementation for a strategy; unknown values fall back to balanced."""
    try:
        strategy = OptimizationStrategy(strategy)
    except ValueError:
        logger.warning("Unknown optimization strategy %r, using balanced", strategy)
        strategy = OptimizationStrategy.BALANCED

    if strategy == OptimizationStrategy.SELECTIVE_PRUNING:
        return SelectivePruning()
    if strategy == OptimizationStrategy.AGGRESSIVE_SUMMARIZATION:
        return AggressiveSummarization(summarizer)
    if strategy == OptimizationStrategy.SEMANTIC_CHUNKING:
        return SemanticChunking()
    if strategy == OptimizationStrategy.TIERED_EVICTION:
        return TieredEviction()
    return BalancedOptimization(summarizer)
