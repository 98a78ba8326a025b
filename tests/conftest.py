# tests/conftest.py
"""
Shared pytest fixtures and configuration for contextloop tests.

Provides a scripted completion service, a configurable fake tool, a
controllable wall clock and pre-wired context and checkpoint managers.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from contextloop.context import CheckpointManager, ContextManager, OptimizationConfig
from contextloop.execution.models import CompletionRequest, CompletionResponse, StreamToken
from contextloop.execution.tools import ToolParameter, ToolResult
from contextloop.storage import InMemorySessionStore

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logging.getLogger("contextloop").setLevel(logging.DEBUG)

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Wall clock that only moves when told to, optionally ticking on every read."""

    def __init__(self, start: datetime = BASE_TIME, tick: timedelta = timedelta(0)):
        self.now = start
        self.tick = tick

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.tick
        return current

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class ScriptedProvider:
    """
    Completion service that replays scripted outcomes.

    Each entry in ``responses`` is either a CompletionResponse to return or
    an exception to raise. Once the script runs out ``default`` is used.
    """

    def __init__(
        self,
        responses: Iterable[Any] = (),
        *,
        default: Any = None,
        name: str = "fake",
        streaming: bool = False,
        stream_tokens: Iterable[StreamToken] = (),
    ):
        self.responses = list(responses)
        self.default = default
        self.requests: list[CompletionRequest] = []
        self.streaming = streaming
        self.stream_tokens = list(stream_tokens)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def create_completion(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.responses:
            outcome = self.responses.pop(0)
        elif self.default is not None:
            outcome = self.default
        else:
            raise AssertionError("no scripted response left")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome.model_copy(deep=True)

    async def stream_completion(self, request: CompletionRequest):
        self.requests.append(request)
        for token in self.stream_tokens:
            yield token

    def supports_streaming(self) -> bool:
        return self.streaming

    def is_retryable(self, error: BaseException) -> bool:
        return False


class FakeTool:
    """Tool that records its calls and returns (or raises) a fixed outcome."""

    def __init__(
        self,
        name: str = "echo",
        *,
        parameters: Iterable[ToolParameter] = (),
        category: str = "file",
        requires_permission: bool = False,
        destructive: bool = False,
        result: ToolResult | None = None,
        error: Exception | None = None,
        description: str = "",
    ):
        self.name = name
        self.description = description or f"{name} tool"
        self.parameters = list(parameters)
        self.category = category
        self.requires_permission = requires_permission
        self.destructive = destructive
        self.result = result
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def execute(self, arguments: dict[str, Any]) -> ToolResult:
        self.calls.append(arguments)
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        return ToolResult.ok(f"{self.name} ok")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    """A frozen wall clock starting at 2025-01-01T00:00:00Z."""
    return FakeClock()


@pytest.fixture
def make_provider():
    """Factory for scripted completion services."""
    return ScriptedProvider


@pytest.fixture
def make_tool():
    """Factory for fake tools."""
    return FakeTool


@pytest.fixture
def summary_provider():
    """Completion service that answers every request with a short summary."""
    return ScriptedProvider(default=CompletionResponse(content="short summary"))


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def context_manager(clock):
    """ContextManager with a 1000-token budget and auto-optimization off."""
    return ContextManager(OptimizationConfig(max_tokens=1000, auto_optimize=False), clock=clock)


@pytest_asyncio.fixture
async def checkpoint_manager(store):
    """CheckpointManager whose clock advances one second per checkpoint."""
    manager = CheckpointManager(store, clock=FakeClock(tick=timedelta(seconds=1)))
    yield manager
    await manager.aclose()
