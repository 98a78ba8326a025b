# contextloop/context/models/__init__.py
"""Data models for the context engine."""

from contextloop.context.models.enums import ContextItemType, ContextTier, OptimizationStrategy
from contextloop.context.models.item import ContextItem, ContextSnapshot, estimate_tokens
from contextloop.context.models.metrics import ContextMetrics, OptimizationConfig

# Checkpoint embeds execution messages; import it after the item models
from contextloop.context.models.checkpoint import Checkpoint  # noqa: E402

__all__ = [
    "Checkpoint",
    "ContextItem",
    "ContextItemType",
    "ContextMetrics",
    "ContextSnapshot",
    "ContextTier",
    "OptimizationConfig",
    "OptimizationStrategy",
    "estimate_tokens",
]
