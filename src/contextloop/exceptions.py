# contextloop/exceptions.py
"""
Error taxonomy for contextloop.

Every error raised by the library is a ContextLoopError carrying a stable
ErrorCode, a developer message, an optional user-facing message, an optional
wrapped cause and explicit retryable/recoverable flags. Callers ask
``err.is_code(...)`` or ``is_retryable(err)`` instead of inspecting types.

A handful of subclasses exist for conditions callers commonly catch by type
(missing sessions and checkpoints, open breakers, exhausted retries, the
iteration limit).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from contextloop.execution.models import AgentResponse


class ErrorCode(str, Enum):
    """Categorized error codes."""

    # Configuration
    CONFIG = "CONFIG_ERROR"
    CONFIG_INVALID = "CONFIG_INVALID"

    # Storage
    STORAGE = "STORAGE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    CHECKPOINT_NOT_FOUND = "CHECKPOINT_NOT_FOUND"

    # Provider
    PROVIDER = "PROVIDER_ERROR"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_AUTH = "PROVIDER_AUTH_ERROR"
    PROVIDER_QUOTA = "PROVIDER_QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    EXTERNAL = "EXTERNAL_ERROR"

    # Resilience
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"

    # Tools
    TOOL = "TOOL_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_PERMISSION = "TOOL_PERMISSION_DENIED"
    TOOL_EXECUTION = "TOOL_EXECUTION_ERROR"

    # Validation / user
    VALIDATION = "VALIDATION_ERROR"
    CANCELLED = "USER_CANCELED"

    # Resource exhaustion
    MAX_ITERATIONS = "MAX_ITERATIONS"
    TOO_MANY_ERRORS = "TOO_MANY_ERRORS"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"

    # Internal
    INTERNAL = "INTERNAL_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


class ContextLoopError(Exception):
    """Base error with a stable code and an optional wrapped cause."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        user_message: str | None = None,
        cause: BaseException | None = None,
        retryable: bool = False,
        recoverable: bool = False,
        context: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.user_message = user_message
        self.cause = cause
        self.retryable = retryable
        self.recoverable = recoverable
        self.context: dict[str, str] = dict(context or {})
        super().__init__(str(self))
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.code.value}] {self.message}: {self.cause}"
        return f"[{self.code.value}] {self.message}"

    def is_code(self, code: ErrorCode) -> bool:
        return self.code == code

    def with_context(self, key: str, value: Any) -> ContextLoopError:
        self.context[key] = str(value)
        return self

    def with_user_message(self, message: str) -> ContextLoopError:
        self.user_message = message
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "recoverable": self.recoverable,
            "context": dict(self.context),
        }


# =============================================================================
# Named subclasses
# =============================================================================


class SessionNotFound(ContextLoopError):
    """No working set exists for the requested session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            ErrorCode.SESSION_NOT_FOUND,
            f"session not found: {session_id}",
            context={"session_id": session_id},
        )
        self.session_id = session_id


class CheckpointNotFound(ContextLoopError):
    """No checkpoint exists with the requested id."""

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(
            ErrorCode.CHECKPOINT_NOT_FOUND,
            f"checkpoint not found: {checkpoint_id}",
            user_message=f"Checkpoint '{checkpoint_id}' does not exist.",
            context={"checkpoint_id": checkpoint_id},
        )
        self.checkpoint_id = checkpoint_id


class CircuitOpenError(ContextLoopError):
    """Call rejected because the dependency's circuit breaker is open."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            ErrorCode.CIRCUIT_OPEN,
            "circuit breaker is open" + (f" for {key}" if key else ""),
            user_message="The AI provider is failing repeatedly. Waiting before trying again.",
            recoverable=True,
        )
        if key:
            self.context["key"] = key


class RetryExhaustedError(ContextLoopError):
    """All retry attempts failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            ErrorCode.RETRY_EXHAUSTED,
            f"operation failed after {attempts} attempts",
            user_message=get_user_message(last_error),
            cause=last_error,
            recoverable=True,
        )
        self.attempts = attempts
        self.last_error = last_error


class OperationCancelled(ContextLoopError):
    """Cooperative cancellation was requested."""

    def __init__(self, message: str = "operation canceled by user") -> None:
        super().__init__(
            ErrorCode.CANCELLED,
            message,
            user_message="Operation canceled.",
            recoverable=True,
        )


class MaxIterationsExceeded(ContextLoopError):
    """The agent loop hit its iteration limit; carries the partial response."""

    def __init__(self, max_iterations: int, response: AgentResponse) -> None:
        super().__init__(
            ErrorCode.MAX_ITERATIONS,
            f"agent reached maximum iterations ({max_iterations}) without completing task",
            user_message=(
                f"The task was not finished within {max_iterations} steps. "
                "Partial progress is included; you can continue from here."
            ),
            recoverable=True,
        )
        self.max_iterations = max_iterations
        self.response = response


class ConsecutiveErrorLimit(ContextLoopError):
    """The agent stopped after too many consecutive failures; carries the partial response."""

    def __init__(self, errors: int, response: AgentResponse, cause: BaseException | None = None) -> None:
        super().__init__(
            ErrorCode.TOO_MANY_ERRORS,
            f"agent stopped after {errors} consecutive errors",
            user_message="The task was stopped after repeated failures. Partial progress is included.",
            cause=cause,
            recoverable=True,
        )
        self.errors = errors
        self.response = response


# =============================================================================
# Helpers
# =============================================================================


def wrap(err: BaseException, code: ErrorCode, message: str) -> ContextLoopError:
    """
    Wrap an arbitrary exception in a ContextLoopError.

    An error that already is a ContextLoopError passes its code, flags,
    user message and context on to the wrapper, so callers checking codes
    see the original classification.
    """
    if isinstance(err, ContextLoopError):
        return ContextLoopError(
            err.code,
            message,
            user_message=err.user_message,
            cause=err,
            retryable=err.retryable,
            recoverable=err.recoverable,
            context=err.context,
        )
    return ContextLoopError(code, message, cause=err)


def is_code(err: BaseException | None, code: ErrorCode) -> bool:
    return isinstance(err, ContextLoopError) and err.code == code


def is_retryable(err: BaseException | None) -> bool:
    """True when the error explicitly says it can be retried."""
    if isinstance(err, ContextLoopError):
        return err.retryable
    return bool(getattr(err, "retryable", False))


def get_user_message(err: BaseException) -> str:
    if isinstance(err, ContextLoopError):
        return err.user_message or err.message
    return str(err)


# =============================================================================
# Constructors
# =============================================================================


def validation_error(field: str, message: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.VALIDATION,
        f"validation failed for {field}: {message}",
        user_message=f"Invalid {field}: {message}",
        context={"field": field},
    )


def provider_error(message: str, cause: BaseException | None = None) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.PROVIDER,
        message,
        cause=cause,
        retryable=True,
        recoverable=True,
    )


def provider_timeout_error(provider: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.PROVIDER_TIMEOUT,
        f"provider {provider} timed out",
        user_message=f"The AI provider ({provider}) is not responding. Please try again.",
        retryable=True,
        recoverable=True,
        context={"provider": provider},
    )


def rate_limit_error(provider: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.RATE_LIMITED,
        f"rate limit exceeded for provider {provider}",
        user_message=f"{provider} is rate limiting requests. Please retry later.",
        retryable=True,
        recoverable=True,
        context={"provider": provider},
    )


def provider_auth_error(provider: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.PROVIDER_AUTH,
        f"authentication failed for provider {provider}",
        user_message=f"Authentication failed for {provider}. Please check your API key.",
        context={"provider": provider},
    )


def provider_quota_error(provider: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.PROVIDER_QUOTA,
        f"quota exceeded for provider {provider}",
        user_message=f"You've exceeded the quota for {provider}. Please check your plan and usage limits.",
        recoverable=True,
        context={"provider": provider},
    )


def tool_permission_error(tool: str, action: str) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.TOOL_PERMISSION,
        f"permission denied for tool {tool} to perform {action}",
        user_message=f"Permission required: {tool} needs to {action}. Please approve this action.",
        context={"tool": tool, "action": action},
    )


def budget_exceeded_error(spent: float, budget: float) -> ContextLoopError:
    return ContextLoopError(
        ErrorCode.BUDGET_EXCEEDED,
        f"daily budget exhausted: spent ${spent:.2f} of ${budget:.2f}",
        user_message="The daily spending budget has been reached. Please check your plan or raise the budget.",
        recoverable=True,
        context={"spent": f"{spent:.4f}", "budget": f"{budget:.4f}"},
    )
