# contextloop/context/models/metrics.py
"""Optimization policy and derived per-session metrics."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from contextloop import config as defaults
from contextloop.context.models.enums import ContextItemType, OptimizationStrategy


class OptimizationConfig(BaseModel):
    """
    Per-session optimization policy.

    ``target_tokens`` defaults to half of ``max_tokens``. Items whose type is
    listed in ``preserve_types`` are never evicted or summarized.
    """

    model_config = {"frozen": True}

    strategy: OptimizationStrategy = Field(default=OptimizationStrategy.BALANCED)
    max_tokens: int = Field(default=defaults.DEFAULT_MAX_TOKENS, gt=0)
    target_tokens: int = Field(default=0, ge=0, description="Size to shrink to; 0 means max_tokens // 2")
    min_relevance: float = Field(default=defaults.DEFAULT_MIN_RELEVANCE, ge=0.0, le=1.0)
    preserve_types: frozenset[ContextItemType] = Field(default_factory=frozenset)
    summarization_model: str = Field(
        default=defaults.DEFAULT_SUMMARIZATION_MODEL,
        description="Model requested for summaries; empty uses the summarizer's own model",
    )
    auto_optimize: bool = Field(default=defaults.DEFAULT_AUTO_OPTIMIZE)
    optimize_threshold: float = Field(default=defaults.DEFAULT_OPTIMIZE_THRESHOLD, gt=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _default_target(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("target_tokens"):
            data = dict(data)
            data["target_tokens"] = int(data.get("max_tokens") or defaults.DEFAULT_MAX_TOKENS) // 2
        return data

    @classmethod
    def from_env(cls, **overrides: Any) -> OptimizationConfig:
        """Build a config from the CONTEXTLOOP_* environment defaults."""
        values: dict[str, Any] = {
            "strategy": defaults.DEFAULT_STRATEGY,
            "max_tokens": defaults.DEFAULT_MAX_TOKENS,
            "min_relevance": defaults.DEFAULT_MIN_RELEVANCE,
            "auto_optimize": defaults.DEFAULT_AUTO_OPTIMIZE,
            "optimize_threshold": defaults.DEFAULT_OPTIMIZE_THRESHOLD,
            "summarization_model": defaults.DEFAULT_SUMMARIZATION_MODEL,
        }
        values.update(overrides)
        return cls(**values)


class ContextMetrics(BaseModel):
    """Derived size accounting for one session, recomputed on every mutation."""

    current_size: int = 0
    max_size: int = 0
    hot_tier_size: int = 0
    warm_tier_size: int = 0
    cold_tier_size: int = 0
    efficiency: float = Field(default=0.0, description="1 - current/max when under max, else 0")
    item_count: int = 0
    last_optimized: datetime | None = None
    optimization_runs: int = 0

    @property
    def utilization(self) -> float:
        if self.max_size <= 0:
            return 0.0
        return self.current_size / self.max_size
