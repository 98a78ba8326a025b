# contextloop/context/models/item.py
"""ContextItem and ContextSnapshot."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from contextloop.context.models.enums import ContextItemType, ContextTier


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 characters per token, at least 1 for non-empty text."""
    if not text:
        return 0
    return max(1, len(text) // 4)


class ContextItem(BaseModel):
    """
    One unit of working memory.

    ``token_count`` is estimated from the content when omitted and must be
    recomputed whenever the content changes; use ``with_content`` rather than
    assigning ``content`` directly.
    """

    id: str = Field(default="", description="Opaque id, unique within the session")
    type: ContextItemType = Field(..., description="Item kind")
    content: str = Field(default="", description="Item text")
    tier: ContextTier = Field(default=ContextTier.HOT, description="Current tier")
    token_count: int = Field(default=0, ge=0, description="Tokens the content occupies")
    last_accessed: datetime | None = Field(default=None, description="Last time the item was served")
    relevance: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Explicit importance; defaulted to 1.0 when the item is added",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_token_count(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("token_count") is None:
            data = dict(data)
            data["token_count"] = estimate_tokens(data.get("content") or "")
        return data

    def with_content(self, content: str, **updates: Any) -> ContextItem:
        """Copy with new content; token_count is recomputed, never inherited."""
        return self.model_copy(
            update={**updates, "content": content, "token_count": estimate_tokens(content)},
            deep=True,
        )

    @property
    def effective_relevance(self) -> float:
        return 1.0 if self.relevance is None else self.relevance


class ContextSnapshot(BaseModel):
    """Immutable point-in-time copy of a session's working set."""

    model_config = {"frozen": True}

    session_id: str
    timestamp: datetime
    items: list[ContextItem] = Field(default_factory=list)
    total_tokens: int = Field(default=0, ge=0)
    optimization_ratio: float = Field(default=0.0, description="Session efficiency at capture time")

    @model_validator(mode="after")
    def _check_total(self) -> ContextSnapshot:
        actual = sum(item.token_count for item in self.items)
        if actual != self.total_tokens:
            raise ValueError(f"total_tokens {self.total_tokens} does not match item sum {actual}")
        return self
