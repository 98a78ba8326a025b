# contextloop/execution/cost.py
"""Token usage and cost accounting with an optional daily budget."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from contextloop import config as defaults

from .models import Usage

logger = logging.getLogger(__name__)

BUDGET_WARNING_FRACTION = 0.8

WarningCallback = Callable[[float, float], None]
"""Callback: (spent, budget)."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pricing(BaseModel):
    """Per-1K-token prices for a model."""

    input_per_1k: float = 0.0
    output_per_1k: float = 0.0
    minimum_cost: float = 0.0


class CostEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    model_name: str = ""
    operation: str = "completion"

    model_config = {"protected_namespaces": ()}


class CostTracker:
    """
    Running totals of tokens and spend for an agent session.

    With a daily budget set, the warning callback fires once when spend
    reaches 80% of the budget; ``check_budget`` turns False once the budget
    is used up.

    Only the most recent ``max_entries`` per-call entries are kept; the
    running totals cover every call.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_entries: int = defaults.DEFAULT_COST_MAX_ENTRIES,
    ) -> None:
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._entries: deque[CostEntry] = deque(maxlen=max_entries)
        self._total_input = 0
        self._total_output = 0
        self._total_cost = 0.0
        self._daily_spent = 0.0
        self._daily_budget = 0.0
        self._warning_callback: WarningCallback | None = None
        self._warned = False
        self._session_start = self._clock()
        self._last_reset = self._session_start

    def add_usage(self, usage: Usage, model_name: str = "", operation: str = "completion") -> CostEntry:
        with self._lock:
            self._total_input += usage.input_tokens
            self._total_output += usage.output_tokens
            self._total_cost += usage.cost
            self._daily_spent += usage.cost
            entry = CostEntry(
                timestamp=self._clock(),
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost=usage.cost,
                model_name=model_name,
                operation=operation,
            )
            self._entries.append(entry)

            fire = (
                self._daily_budget > 0
                and not self._warned
                and self._warning_callback is not None
                and self._daily_spent >= self._daily_budget * BUDGET_WARNING_FRACTION
            )
            if fire:
                self._warned = True
            callback = self._warning_callback
            spent, budget = self._daily_spent, self._daily_budget

        if fire and callback is not None:
            logger.warning("Daily spend %.4f reached %.0f%% of budget %.4f", spent, BUDGET_WARNING_FRACTION * 100, budget)
            callback(spent, budget)
        return entry

    def totals(self) -> tuple[int, int, float]:
        """(input tokens, output tokens, cost)."""
        with self._lock:
            return self._total_input, self._total_output, self._total_cost

    @property
    def daily_spent(self) -> float:
        with self._lock:
            return self._daily_spent

    @property
    def daily_budget(self) -> float:
        with self._lock:
            return self._daily_budget

    def entries(self) -> list[CostEntry]:
        with self._lock:
            return [entry.model_copy() for entry in self._entries]

    def set_daily_budget(self, budget: float, warning_callback: WarningCallback | None = None) -> None:
        with self._lock:
            self._daily_budget = budget
            self._warned = False
            if warning_callback is not None:
                self._warning_callback = warning_callback

    def set_warning_callback(self, callback: WarningCallback | None) -> None:
        with self._lock:
            self._warning_callback = callback

    def check_budget(self) -> bool:
        """True while under budget (always True with no budget set)."""
        with self._lock:
            if self._daily_budget <= 0:
                return True
            return self._daily_spent < self._daily_budget

    def remaining_budget(self) -> float | None:
        """Budget left today, or None with no budget set."""
        with self._lock:
            if self._daily_budget <= 0:
                return None
            return self._daily_budget - self._daily_spent

    def reset_daily(self) -> None:
        with self._lock:
            self._daily_spent = 0.0
            self._warned = False
            self._last_reset = self._clock()

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_input = 0
            self._total_output = 0
            self._total_cost = 0.0
            self._daily_spent = 0.0
            self._warned = False
            self._session_start = self._clock()
            self._last_reset = self._session_start

    def session_duration(self) -> timedelta:
        with self._lock:
            return self._clock() - self._session_start


def estimate_cost(input_tokens: int, output_tokens: int, pricing: Pricing) -> float:
    total = input_tokens / 1000.0 * pricing.input_per_1k + output_tokens / 1000.0 * pricing.output_per_1k
    return max(total, pricing.minimum_cost)


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"
