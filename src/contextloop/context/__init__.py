# contextloop/context/__init__.py
"""
Tiered context optimization.

Keeps each session's working memory inside a token budget: items are scored
by relevance and recency, placed in Hot/Warm/Cold tiers and shrunk by one of
five strategies when utilization crosses the configured threshold.
Checkpoints persist point-in-time copies of a session's context and
messages.
"""

from contextloop.context.models import (
    Checkpoint,
    ContextItem,
    ContextItemType,
    ContextMetrics,
    ContextSnapshot,
    ContextTier,
    OptimizationConfig,
    OptimizationStrategy,
    estimate_tokens,
)
from contextloop.context.scoring import composite_score, rank_items, recency_score, should_preserve, total_tokens
from contextloop.context.tiering import TierAllocation, TierAllocator
from contextloop.context.summarizer import SummarizationRequest, SummarizationResult, Summarizer
from contextloop.context.strategies import (
    AggressiveSummarization,
    BalancedOptimization,
    OptimizationStrategyImpl,
    SelectivePruning,
    SemanticChunking,
    TieredEviction,
    build_strategy,
)
from contextloop.context.locks import AsyncRWLock
from contextloop.context.manager import ContextManager
from contextloop.context.checkpoint import CheckpointManager
from contextloop.context.exporter import ExportOptions, SessionExport, SessionExportData, SessionExporter

__all__ = [
    # Models
    "Checkpoint",
    "ContextItem",
    "ContextItemType",
    "ContextMetrics",
    "ContextSnapshot",
    "ContextTier",
    "OptimizationConfig",
    "OptimizationStrategy",
    "estimate_tokens",
    # Scoring / tiering
    "TierAllocation",
    "TierAllocator",
    "composite_score",
    "rank_items",
    "recency_score",
    "should_preserve",
    "total_tokens",
    # Strategies
    "AggressiveSummarization",
    "BalancedOptimization",
    "OptimizationStrategyImpl",
    "SelectivePruning",
    "SemanticChunking",
    "TieredEviction",
    "build_strategy",
    # Summarization
    "SummarizationRequest",
    "SummarizationResult",
    "Summarizer",
    # Managers
    "AsyncRWLock",
    "CheckpointManager",
    "ContextManager",
    # Export
    "ExportOptions",
    "SessionExport",
    "SessionExportData",
    "SessionExporter",
]
