# contextloop/context/summarizer.py
"""
LLM-backed summarization of context items.

Usage::

    from contextloop.context.summarizer import Summarizer, SummarizationRequest

    summarizer = Summarizer(completion_service, model="claude-haiku-4-5")
    result = await summarizer.summarize(
        SummarizationRequest(content=text, type=ContextItemType.TOOL_RESULT, target_tokens=500)
    )
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from contextloop.exceptions import ContextLoopError, ErrorCode, validation_error, wrap
from contextloop.execution.models import CompletionRequest, Message
from contextloop.execution.provider import CompletionService

from .models import ContextItemType, estimate_tokens

SUMMARY_TEMPERATURE = 0.3
CHARS_PER_TOKEN = 4

# =============================================================================
# Models
# =============================================================================


class SummarizationRequest(BaseModel):
    content: str
    type: ContextItemType = ContextItemType.MESSAGE
    target_tokens: int = Field(default=0, ge=0, description="0 means half the original size")
    preserve_details: list[str] = Field(default_factory=list, description="Facts the summary must keep")
    model: str = Field(default="", description="Overrides the summarizer's model when set")


class SummarizationResult(BaseModel):
    original: str
    summarized: str
    original_size: int
    summary_size: int
    compression: float = Field(default=0.0, description="tokens_saved / original_size")
    tokens_saved: int = 0

    @classmethod
    def passthrough(cls, content: str) -> SummarizationResult:
        size = estimate_tokens(content)
        return cls(original=content, summarized=content, original_size=size, summary_size=size)


# =============================================================================
# Prompt building
# =============================================================================

_SUBJECTS: dict[ContextItemType, str] = {
    ContextItemType.TOOL_RESULT: "tool execution output",
    ContextItemType.MESSAGE: "conversation messages",
    ContextItemType.FILE_CONTENT: "file content",
    ContextItemType.VALIDATION: "validation results",
    ContextItemType.PLAN: "execution plan",
}

_FOCUS: dict[ContextItemType, tuple[list[str], str]] = {
    ContextItemType.TOOL_RESULT: (
        ["Final results and outputs", "Any errors or warnings", "Key changes made"],
        "Skip verbose logs and intermediate steps.",
    ),
    ContextItemType.MESSAGE: (
        ["User's request and intent", "Key decisions made", "Important outcomes"],
        "Skip pleasantries and redundant information.",
    ),
    ContextItemType.FILE_CONTENT: (
        ["Core functionality and purpose", "Public APIs and interfaces", "Critical implementation details"],
        "Skip boilerplate and comments.",
    ),
    ContextItemType.VALIDATION: (
        ["Issues found", "Resolution status", "Remaining concerns"],
        "Skip successful validation checks.",
    ),
    ContextItemType.PLAN: (
        ["High-level approach", "Key steps", "Files to modify"],
        "Skip detailed explanations.",
    ),
}


def build_prompt(request: SummarizationRequest) -> str:
    subject = _SUBJECTS.get(request.type, "content")
    lines = [f"Summarize the following {subject} while preserving the most important information.", ""]

    if request.preserve_details:
        lines.append("CRITICAL: You must preserve these details:")
        lines.extend(f"- {detail}" for detail in request.preserve_details)
        lines.append("")

    focus = _FOCUS.get(request.type)
    if focus:
        points, skip = focus
        lines.append("Focus on:")
        lines.extend(f"- {point}" for point in points)
        lines.append(skip)
        lines.append("")

    lines.append(
        f"Target length: approximately {request.target_tokens} tokens "
        f"(about {request.target_tokens * CHARS_PER_TOKEN} characters)."
    )
    lines.append("")
    lines.append("Content to summarize:")
    lines.append("")
    lines.append(request.content)
    return "\n".join(lines)


# =============================================================================
# Summarizer
# =============================================================================


class Summarizer:
    """Summarizes text through a completion service."""

    def __init__(
        self,
        completion_service: CompletionService,
        model: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self._service = completion_service
        self.model = model or "default"
        self._logger = logger or logging.getLogger(__name__)

    async def summarize(self, request: SummarizationRequest) -> SummarizationResult:
        if not request.content:
            raise validation_error("content", "content is required")

        original_tokens = estimate_tokens(request.content)
        target = request.target_tokens or original_tokens // 2

        if original_tokens <= target:
            return SummarizationResult.passthrough(request.content)

        request = request.model_copy(update={"target_tokens": target})
        completion_request = CompletionRequest(
            model=request.model or self.model,
            messages=[Message.user(build_prompt(request))],
            max_tokens=target,
            temperature=SUMMARY_TEMPERATURE,
        )

        try:
            completion = await self._service.create_completion(completion_request)
        except Exception as e:
            raise wrap(e, ErrorCode.EXTERNAL, "summarization LLM call failed") from e

        summary = completion.content
        if not summary:
            raise ContextLoopError(ErrorCode.EXTERNAL, "no summary generated")

        summary_tokens = estimate_tokens(summary)
        saved = original_tokens - summary_tokens
        result = SummarizationResult(
            original=request.content,
            summarized=summary,
            original_size=original_tokens,
            summary_size=summary_tokens,
            tokens_saved=saved,
            compression=saved / original_tokens if original_tokens else 0.0,
        )

        self._logger.debug(
            "Summarization complete: %d -> %d tokens (%.1f%%)",
            original_tokens,
            summary_tokens,
            result.compression * 100,
        )
        return result

    async def summarize_batch(self, requests: list[SummarizationRequest]) -> list[SummarizationResult]:
        """Summarize sequentially; a failed item passes through unchanged."""
        results: list[SummarizationResult] = []
        for request in requests:
            try:
                results.append(await self.summarize(request))
            except ContextLoopError as e:
                self._logger.warning("Batch summarization item failed: %s", e)
                results.append(SummarizationResult.passthrough(request.content))
        return results
