# contextloop/context/scoring.py
"""
Relevance scoring for context items.

The composite score is the universal ranking key for selection, pruning and
tiering:

    score = relevance * 0.7 + recency * 0.3
    recency = 1 / (1 + hours_since_last_access / 24)

Items that have never been served count as fully recent. Ranking is a stable
sort, so equal scores keep their insertion order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from .models import ContextItem, ContextItemType, OptimizationConfig

RELEVANCE_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3
RECENCY_HALF_SCALE_HOURS = 24.0
PRESERVE_RELEVANCE = 0.9


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def recency_score(item: ContextItem, now: datetime | None = None) -> float:
    if item.last_accessed is None:
        return 1.0
    now = now or _utcnow()
    hours = max(0.0, (now - item.last_accessed).total_seconds() / 3600.0)
    return 1.0 / (1.0 + hours / RECENCY_HALF_SCALE_HOURS)


def composite_score(item: ContextItem, now: datetime | None = None) -> float:
    return item.effective_relevance * RELEVANCE_WEIGHT + recency_score(item, now) * RECENCY_WEIGHT


def rank_items(items: Iterable[ContextItem], now: datetime | None = None) -> list[ContextItem]:
    """
    Return items ordered by descending composite score.

    A single ``now`` is used for the whole call so scores are comparable.
    The input is not modified.
    """
    now = now or _utcnow()
    return sorted(items, key=lambda item: composite_score(item, now), reverse=True)


def should_preserve(item: ContextItem, config: OptimizationConfig) -> bool:
    """True for items that must survive every optimization pass unchanged."""
    if item.type == ContextItemType.USER_INTENT:
        return True
    if item.type in config.preserve_types:
        return True
    return item.effective_relevance >= PRESERVE_RELEVANCE


def total_tokens(items: Sequence[ContextItem]) -> int:
    return sum(item.token_count for item in items)
