# contextloop/__init__.py
"""
contextloop - bounded-context memory and a resilient tool-calling loop.

Quick Start:
    from contextloop import Agent, AgentConfig, AgentRequest, ContextManager, OptimizationConfig

    context = ContextManager(OptimizationConfig(max_tokens=8000))
    agent = Agent(provider, AgentConfig(), registry, gate, context_manager=context)
    response = await agent.execute(AgentRequest(user_message="Add a test", session_id="s1"))
"""

import logging

from contextloop.exceptions import (
    CheckpointNotFound,
    CircuitOpenError,
    ConsecutiveErrorLimit,
    ContextLoopError,
    ErrorCode,
    MaxIterationsExceeded,
    OperationCancelled,
    RetryExhaustedError,
    SessionNotFound,
)
from contextloop.context import (
    Checkpoint,
    CheckpointManager,
    ContextItem,
    ContextItemType,
    ContextManager,
    ContextMetrics,
    ContextSnapshot,
    ContextTier,
    OptimizationConfig,
    OptimizationStrategy,
    SessionExporter,
    Summarizer,
)
from contextloop.execution import (
    Agent,
    AgentConfig,
    AgentRequest,
    AgentResponse,
    CircuitBreaker,
    CompletionService,
    ErrorRecoveryContext,
    RetryExecutor,
    RetryPolicy,
    ToolRegistry,
)
from contextloop.storage import InMemorySessionStore, MessageRecord, SessionRecord, SessionStore

__version__ = "0.1.0"

# Library logging stays silent unless the application configures handlers
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Errors
    "CheckpointNotFound",
    "CircuitOpenError",
    "ConsecutiveErrorLimit",
    "ContextLoopError",
    "ErrorCode",
    "MaxIterationsExceeded",
    "OperationCancelled",
    "RetryExhaustedError",
    "SessionNotFound",
    # Context
    "Checkpoint",
    "CheckpointManager",
    "ContextItem",
    "ContextItemType",
    "ContextManager",
    "ContextMetrics",
    "ContextSnapshot",
    "ContextTier",
    "OptimizationConfig",
    "OptimizationStrategy",
    "SessionExporter",
    "Summarizer",
    # Execution
    "Agent",
    "AgentConfig",
    "AgentRequest",
    "AgentResponse",
    "CircuitBreaker",
    "CompletionService",
    "ErrorRecoveryContext",
    "RetryExecutor",
    "RetryPolicy",
    "ToolRegistry",
    # Storage
    "InMemorySessionStore",
    "MessageRecord",
    "SessionRecord",
    "SessionStore",
    "__version__",
]
