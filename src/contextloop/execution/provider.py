# contextloop/execution/provider.py
"""Completion service interface consumed by the agent loop and the summarizer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from .models import CompletionRequest, CompletionResponse, StreamToken


@runtime_checkable
class CompletionService(Protocol):
    """
    An LLM backend.

    Implementations wrap a vendor HTTP client. ``stream_completion`` yields
    incremental tokens and finishes with a token whose ``done`` flag is set
    and which carries the usage record. ``is_retryable`` tells the retry
    executor whether a failure raised by this backend is transient.
    """

    @property
    def name(self) -> str: ...

    async def create_completion(self, request: CompletionRequest) -> CompletionResponse: ...

    def stream_completion(self, request: CompletionRequest) -> AsyncIterator[StreamToken]: ...

    def supports_streaming(self) -> bool: ...

    def is_retryable(self, error: BaseException) -> bool: ...
