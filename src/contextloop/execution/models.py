# contextloop/execution/models.py
"""Messages, completion records and agent request/response models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from contextloop import config as defaults

# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class StopReason(str, Enum):
    """Why the completion service stopped generating."""

    END_TURN = "end_turn"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | StopReason | None) -> StopReason:
        if isinstance(value, StopReason):
            return value
        try:
            return cls(value or "")
        except ValueError:
            return cls.UNKNOWN


class RunState(str, Enum):
    """States of one agent run."""

    CALLING = "calling"  # Awaiting a completion
    EXECUTING = "executing"  # Running tool calls
    DONE = "done"
    FAILED = "failed"
    EXHAUSTED = "exhausted"  # Iteration limit reached


# =============================================================================
# Messages
# =============================================================================


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] | str | None = Field(default=None, description="Raw arguments as sent by the model")


class Message(BaseModel):
    """One transcript entry."""

    role: MessageRole
    content: str = ""
    name: str | None = Field(default=None, description="Tool name for tool messages")
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, call_id: str, name: str, content: str) -> Message:
        return cls(role=MessageRole.TOOL, content=content, name=name, tool_call_id=call_id)


class Usage(BaseModel):
    """Token usage and cost, accumulated across calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def add(self, other: Usage | None) -> None:
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens or (other.input_tokens + other.output_tokens)
        self.cost += other.cost


# =============================================================================
# Completion service records
# =============================================================================


class ToolDefinition(BaseModel):
    """Tool schema advertised to the model."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class CompletionRequest(BaseModel):
    model: str
    messages: list[Message] = Field(default_factory=list)
    system_prompt: str = ""
    tools: list[ToolDefinition] = Field(default_factory=list)
    max_tokens: int = 4096
    temperature: float = 0.7
    stream: bool = False


class CompletionResponse(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Usage = Field(default_factory=Usage)
    model: str = ""


class StreamToken(BaseModel):
    """Incremental streaming output; the final token has ``done`` set and carries usage."""

    content: str = ""
    done: bool = False
    tool_call: ToolCall | None = None
    stop_reason: StopReason | None = None
    usage: Usage | None = None


# =============================================================================
# Agent records
# =============================================================================


class AgentConfig(BaseModel):
    model_config = {"frozen": True, "protected_namespaces": ()}

    model_name: str = Field(default=defaults.DEFAULT_MODEL)
    system_prompt: str = ""
    max_iterations: int = Field(default=defaults.DEFAULT_MAX_ITERATIONS, gt=0)
    temperature: float = 0.7
    max_tokens: int = 4096
    streaming: bool = False
    context_tokens: int = Field(default=8000, description="Budget for context rendered into the system prompt")
    tool_result_relevance: float = Field(default=0.5, ge=0.0, le=1.0, description="Relevance of recorded tool results")
    failed_tool_result_relevance: float = Field(default=0.2, ge=0.0, le=1.0)
    include_tool_metadata: bool = Field(default=False, description="Append tool result metadata to the text the model sees")


class ToolCallPhase(str, Enum):
    """Stage of tool-call handling an error came from."""

    VALIDATION = "validation"
    EXECUTION = "execution"
    FORMATTING = "formatting"


class ToolExecution(BaseModel):
    """Record of one tool call performed during a run."""

    tool_name: str
    call_id: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    success: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    permission_granted: bool = True
    phase: ToolCallPhase | None = Field(default=None, description="Where the call failed, when it did")


class AgentRequest(BaseModel):
    user_message: str
    history: list[Message] = Field(default_factory=list)
    session_id: str = ""
    context: str = Field(default="", description="Pre-fetched context rendered by the caller")


class AgentResponse(BaseModel):
    content: str = ""
    tool_calls: list[ToolExecution] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list, description="Transcript produced during the run")
    usage: Usage = Field(default_factory=Usage)
    iterations: int = 0
    complete: bool = False
    state: RunState = RunState.CALLING
    error: str | None = None
