# contextloop/config.py
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Context engine defaults: can be overridden by environment variables
DEFAULT_MAX_TOKENS = int(os.getenv("CONTEXTLOOP_MAX_TOKENS", "200000"))
DEFAULT_MIN_RELEVANCE = float(os.getenv("CONTEXTLOOP_MIN_RELEVANCE", "0.3"))
DEFAULT_OPTIMIZE_THRESHOLD = float(os.getenv("CONTEXTLOOP_OPTIMIZE_THRESHOLD", "0.8"))
DEFAULT_STRATEGY = os.getenv("CONTEXTLOOP_STRATEGY", "balanced")
DEFAULT_AUTO_OPTIMIZE = _env_bool("CONTEXTLOOP_AUTO_OPTIMIZE", True)

# Checkpoint retention
DEFAULT_CHECKPOINT_KEEP_LAST = int(os.getenv("CONTEXTLOOP_CHECKPOINT_KEEP_LAST", "10"))
DEFAULT_AUTO_CHECKPOINT_KEEP_LAST = int(os.getenv("CONTEXTLOOP_AUTO_CHECKPOINT_KEEP_LAST", "5"))

# Agent loop
DEFAULT_MODEL = os.getenv("CONTEXTLOOP_DEFAULT_MODEL", "claude-sonnet-4-5")
# Empty means the summarizer keeps its own model
DEFAULT_SUMMARIZATION_MODEL = os.getenv("CONTEXTLOOP_SUMMARIZATION_MODEL", "")
DEFAULT_MAX_ITERATIONS = int(os.getenv("CONTEXTLOOP_MAX_ITERATIONS", "25"))
DEFAULT_MAX_CONSECUTIVE_ERRORS = int(os.getenv("CONTEXTLOOP_MAX_CONSECUTIVE_ERRORS", "5"))

# Cost accounting: per-call entries kept; totals are unaffected by the cap
DEFAULT_COST_MAX_ENTRIES = int(os.getenv("CONTEXTLOOP_COST_MAX_ENTRIES", "1000"))
