# tests/test_exceptions.py
"""
Tests for the error taxonomy.

Covers:
- ContextLoopError formatting, context and serialization
- Named subclasses and their codes/flags
- wrap() keeping the original classification
- Constructor helpers (retryable vs. not, user messages)
"""

import pytest

from contextloop.exceptions import (
    CheckpointNotFound,
    CircuitOpenError,
    ContextLoopError,
    ErrorCode,
    MaxIterationsExceeded,
    OperationCancelled,
    RetryExhaustedError,
    SessionNotFound,
    budget_exceeded_error,
    get_user_message,
    is_code,
    is_retryable,
    provider_auth_error,
    provider_error,
    provider_quota_error,
    provider_timeout_error,
    rate_limit_error,
    tool_permission_error,
    validation_error,
    wrap,
)
from contextloop.execution.models import AgentResponse


class TestContextLoopError:
    def test_str_without_cause(self):
        err = ContextLoopError(ErrorCode.STORAGE, "disk full")
        assert str(err) == "[STORAGE_ERROR] disk full"

    def test_str_with_cause(self):
        err = ContextLoopError(ErrorCode.STORAGE, "write failed", cause=OSError("disk full"))
        assert str(err) == "[STORAGE_ERROR] write failed: disk full"
        assert isinstance(err.__cause__, OSError)

    def test_context_and_user_message(self):
        err = ContextLoopError(ErrorCode.TOOL, "boom").with_context("tool", "core.bash").with_user_message("Try again")
        assert err.context == {"tool": "core.bash"}
        assert get_user_message(err) == "Try again"

    def test_to_dict(self):
        err = provider_timeout_error("anthropic")
        data = err.to_dict()
        assert data["code"] == "PROVIDER_TIMEOUT"
        assert data["retryable"] is True
        assert data["context"] == {"provider": "anthropic"}

    def test_user_message_falls_back(self):
        assert get_user_message(ContextLoopError(ErrorCode.INTERNAL, "oops")) == "oops"
        assert get_user_message(ValueError("plain")) == "plain"


class TestSubclasses:
    def test_not_found(self):
        assert SessionNotFound("s1").is_code(ErrorCode.SESSION_NOT_FOUND)
        err = CheckpointNotFound("ckpt_1")
        assert err.is_code(ErrorCode.CHECKPOINT_NOT_FOUND)
        assert err.checkpoint_id == "ckpt_1"

    def test_circuit_open_not_retryable(self):
        err = CircuitOpenError("anthropic")
        assert not err.retryable
        assert err.recoverable
        assert err.context["key"] == "anthropic"

    def test_retry_exhausted(self):
        last = provider_timeout_error("anthropic")
        err = RetryExhaustedError(3, last)
        assert err.is_code(ErrorCode.RETRY_EXHAUSTED)
        assert "3 attempts" in str(err)
        assert err.user_message == last.user_message

    def test_cancelled_code(self):
        assert OperationCancelled().code.value == "USER_CANCELED"

    def test_max_iterations_carries_response(self):
        response = AgentResponse(iterations=4)
        err = MaxIterationsExceeded(4, response)
        assert err.response is response
        assert "(4)" in err.message


class TestWrap:
    def test_plain_exception(self):
        cause = RuntimeError("boom")
        err = wrap(cause, ErrorCode.PROVIDER, "LLM call failed")
        assert err.is_code(ErrorCode.PROVIDER)
        assert err.cause is cause
        assert not err.retryable

    def test_keeps_existing_classification(self):
        inner = rate_limit_error("anthropic")
        err = wrap(inner, ErrorCode.PROVIDER, "LLM call failed")
        assert err is not inner
        assert err.is_code(ErrorCode.RATE_LIMITED)
        assert err.retryable
        assert err.cause is inner
        assert err.user_message == inner.user_message


class TestHelpers:
    def test_is_code(self):
        assert is_code(validation_error("x", "bad"), ErrorCode.VALIDATION)
        assert not is_code(ValueError("x"), ErrorCode.VALIDATION)
        assert not is_code(None, ErrorCode.VALIDATION)

    @pytest.mark.parametrize(
        "err,expected",
        [
            (provider_error("upstream"), True),
            (provider_timeout_error("p"), True),
            (rate_limit_error("p"), True),
            (provider_auth_error("p"), False),
            (provider_quota_error("p"), False),
            (tool_permission_error("core.write", "write a.py"), False),
            (budget_exceeded_error(5.0, 5.0), False),
            (ValueError("x"), False),
            (None, False),
        ],
    )
    def test_is_retryable(self, err, expected):
        assert is_retryable(err) is expected

    def test_user_messages(self):
        assert "retry later" in rate_limit_error("anthropic").user_message
        assert "API key" in provider_auth_error("anthropic").user_message
        assert "check your plan" in provider_quota_error("anthropic").user_message
        assert "check your plan" in budget_exceeded_error(5.0, 5.0).user_message
        assert validation_error("path", "required").context == {"field": "path"}
