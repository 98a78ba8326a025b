# contextloop/context/models/enums.py
"""Enums for the context engine."""

from enum import Enum, IntEnum


class ContextItemType(str, Enum):
    """
    Kinds of working-memory items.

    The type drives preservation (user intent is never evicted) and the
    focus of the summarization prompt.
    """

    USER_INTENT = "user_intent"
    PLAN = "plan"
    FILE_CONTENT = "file_content"
    VALIDATION = "validation"
    MESSAGE = "message"
    ARCHITECTURE = "architecture"
    TOOL_RESULT = "tool_result"
    SUMMARY = "summary"


class ContextTier(IntEnum):
    """
    Priority buckets for context items.

    Lower value = kept more readily. Cold items are the first to go under
    pressure.
    """

    HOT = 0  # Always in the prompt
    WARM = 1  # Included while the budget allows
    COLD = 2  # Candidates for eviction


class OptimizationStrategy(str, Enum):
    """Interchangeable algorithms for shrinking a working set."""

    AGGRESSIVE_SUMMARIZATION = "aggressive_summarization"
    SELECTIVE_PRUNING = "selective_pruning"
    SEMANTIC_CHUNKING = "semantic_chunking"
    TIERED_EVICTION = "tiered_eviction"
    BALANCED = "balanced"
