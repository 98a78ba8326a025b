# contextloop/context/tiering.py
"""
Hot/Warm/Cold tier allocation.

Items are walked in descending composite score. Hot takes up to
``max_tokens // 4``, Warm an additional ``max_tokens // 4`` and the rest is
Cold. Preserved items always land in Hot and their tokens count against the
Hot allotment, which they may overrun.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel

from .models import ContextItem, ContextTier, OptimizationConfig
from .scoring import rank_items, should_preserve

logger = logging.getLogger(__name__)


class TierAllocation(BaseModel):
    """Token totals per tier after an allocation pass."""

    hot_tokens: int = 0
    warm_tokens: int = 0
    cold_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.hot_tokens + self.warm_tokens + self.cold_tokens


class TierAllocator:
    """Assigns tiers under a token budget."""

    def __init__(self, config: OptimizationConfig):
        self.config = config

    @property
    def hot_budget(self) -> int:
        return self.config.max_tokens // 4

    @property
    def warm_budget(self) -> int:
        return self.config.max_tokens // 4

    def allocate(
        self,
        items: Sequence[ContextItem],
        now: datetime | None = None,
    ) -> tuple[list[ContextItem], TierAllocation]:
        """
        Relabel tiers.

        Returns copies in the original order (no item is removed) together
        with the per-tier token totals.
        """
        allocation = TierAllocation()
        tiers: dict[int, ContextTier] = {}

        for item in rank_items(items, now):
            if should_preserve(item, self.config):
                tier = ContextTier.HOT
                allocation.hot_tokens += item.token_count
            elif allocation.hot_tokens + item.token_count <= self.hot_budget:
                tier = ContextTier.HOT
                allocation.hot_tokens += item.token_count
            elif allocation.warm_tokens + item.token_count <= self.warm_budget:
                tier = ContextTier.WARM
                allocation.warm_tokens += item.token_count
            else:
                tier = ContextTier.COLD
                allocation.cold_tokens += item.token_count
            tiers[id(item)] = tier

        result = [item.model_copy(update={"tier": tiers[id(item)]}, deep=True) for item in items]

        logger.debug(
            "Tier allocation: hot=%d warm=%d cold=%d (budget %d/%d)",
            allocation.hot_tokens,
            allocation.warm_tokens,
            allocation.cold_tokens,
            self.hot_budget,
            self.warm_budget,
        )
        return result, allocation
