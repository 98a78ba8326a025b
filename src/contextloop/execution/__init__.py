# contextloop/execution/__init__.py
"""
Resilient tool-calling execution.

The agent loop calls a completion service through retries and a circuit
breaker, runs the requested tools one at a time behind a permission gate
and feeds the results back to the model until the task is done.
"""

from contextloop.execution.models import (
    AgentConfig,
    AgentRequest,
    AgentResponse,
    CompletionRequest,
    CompletionResponse,
    Message,
    MessageRole,
    RunState,
    StopReason,
    StreamToken,
    ToolCall,
    ToolCallPhase,
    ToolDefinition,
    ToolExecution,
    Usage,
)
from contextloop.execution.provider import CompletionService
from contextloop.execution.resilience import (
    DEFAULT_RETRY_POLICY,
    CircuitBreaker,
    CircuitState,
    ErrorRecoveryContext,
    RetryExecutor,
    RetryPolicy,
    is_retryable_error,
    retry_with_policy,
)
from contextloop.execution.tools import (
    ParameterKind,
    Tool,
    ToolCallError,
    ToolParameter,
    ToolRegistry,
    ToolResult,
    format_tool_result,
    format_tool_result_with_metadata,
    parse_tool_arguments,
    recover_tool_call,
    validate_arguments,
)
from contextloop.execution.permissions import (
    Permission,
    PermissionGate,
    PermissionRequest,
    StaticPermissionGate,
    determine_permission,
    determine_resource,
)
from contextloop.execution.cost import CostEntry, CostTracker, Pricing, estimate_cost, format_cost

# The agent reaches into the context package; keep it last
from contextloop.execution.agent import Agent  # noqa: E402

__all__ = [
    # Models
    "AgentConfig",
    "AgentRequest",
    "AgentResponse",
    "CompletionRequest",
    "CompletionResponse",
    "Message",
    "MessageRole",
    "RunState",
    "StopReason",
    "StreamToken",
    "ToolCall",
    "ToolCallPhase",
    "ToolDefinition",
    "ToolExecution",
    "Usage",
    # Provider
    "CompletionService",
    # Resilience
    "DEFAULT_RETRY_POLICY",
    "CircuitBreaker",
    "CircuitState",
    "ErrorRecoveryContext",
    "RetryExecutor",
    "RetryPolicy",
    "is_retryable_error",
    "retry_with_policy",
    # Tools
    "ParameterKind",
    "Tool",
    "ToolCallError",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "format_tool_result",
    "format_tool_result_with_metadata",
    "parse_tool_arguments",
    "recover_tool_call",
    "validate_arguments",
    # Permissions
    "Permission",
    "PermissionGate",
    "PermissionRequest",
    "StaticPermissionGate",
    "determine_permission",
    "determine_resource",
    # Cost
    "CostEntry",
    "CostTracker",
    "Pricing",
    "estimate_cost",
    "format_cost",
    # Agent
    "Agent",
]
