# contextloop/context/models/checkpoint.py
"""Checkpoint model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from contextloop.context.models.item import ContextSnapshot
from contextloop.execution.models import Message


class Checkpoint(BaseModel):
    """
    Durable named snapshot of a session's context and message history.

    Created on explicit request or automatically before a destructive tool
    runs; removed by deletion or retention cleanup.
    """

    id: str = Field(..., description="Generated checkpoint id")
    session_id: str
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context: ContextSnapshot
    messages: list[Message] = Field(default_factory=list)
    file_states: dict[str, str] = Field(default_factory=dict, description="path -> content hash")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_auto(self) -> bool:
        return self.name.startswith("auto_")
