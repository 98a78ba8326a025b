# contextloop/execution/resilience.py
"""
Resilience primitives for calling an unreliable completion backend.

- CircuitBreaker: per-dependency failure gate (closed -> open -> half_open)
- RetryExecutor: exponential backoff with +/-20% jitter and cooperative
  cancellation
- ErrorRecoveryContext: consecutive-error counter plus one lazily created
  breaker per dependency key

Breaker and recovery state sit behind their own locks so several agent
loops can share them, independent of any session lock.

Usage::

    recovery = ErrorRecoveryContext(max_consecutive_errors=5)
    breaker = recovery.get_circuit_breaker("anthropic")
    executor = RetryExecutor(RetryPolicy(max_attempts=3))

    response = await executor.run(lambda: breaker.call(lambda: provider.create_completion(req)))
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import threading
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from contextloop import config as defaults
from contextloop.exceptions import (
    CircuitOpenError,
    ContextLoopError,
    OperationCancelled,
    RetryExhaustedError,
)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]

DEFAULT_BREAKER_MAX_FAILURES = 3
DEFAULT_BREAKER_RESET_TIMEOUT = 30.0
JITTER_FACTOR = 0.2

# =============================================================================
# Circuit breaker
# =============================================================================


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting calls
    HALF_OPEN = "half_open"  # Letting a probe through


class CircuitBreaker:
    """
    Failure gate for one dependency.

    ``max_failures`` consecutive failures open the breaker. While open, calls
    are rejected with CircuitOpenError without running the operation. Once
    ``reset_timeout`` seconds have passed since the last failure the next
    call goes through half-open: success closes the breaker and clears the
    count, failure re-opens it. Only one call is let through while half-open.
    """

    def __init__(
        self,
        max_failures: int = DEFAULT_BREAKER_MAX_FAILURES,
        reset_timeout: float = DEFAULT_BREAKER_RESET_TIMEOUT,
        *,
        name: str = "",
        clock: Clock = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failures

    @property
    def last_failure_time(self) -> float | None:
        with self._lock:
            return self._last_failure_time

    def before_call(self) -> CircuitState:
        """
        Admit or reject a call; moves open -> half_open once the timeout has passed.

        Half-open admits a single trial call. Until its outcome is recorded
        every other caller is rejected as if the breaker were still open.
        """
        with self._lock:
            if (
                self._state == CircuitState.OPEN
                and self._last_failure_time is not None
                and self._clock() - self._last_failure_time >= self.reset_timeout
            ):
                self._logger.info("Circuit breaker %s half-open (failures=%d)", self.name, self._failures)
                self._state = CircuitState.HALF_OPEN

            if self._state == CircuitState.OPEN:
                raise CircuitOpenError(self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.name)
                self._probe_in_flight = True
            return self._state

    def record_failure(self) -> None:
        with self._lock:
            self._probe_in_flight = False
            self._failures += 1
            self._last_failure_time = self._clock()
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.max_failures:
                if self._state != CircuitState.OPEN:
                    self._logger.warning(
                        "Circuit breaker %s opening (failures=%d, max=%d)",
                        self.name,
                        self._failures,
                        self.max_failures,
                    )
                self._state = CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._logger.info("Circuit breaker %s closing after successful probe", self.name)
            self._probe_in_flight = False
            self._failures = 0
            self._state = CircuitState.CLOSED

    def release_probe(self) -> None:
        """Let another caller try the half-open probe when this one gave up without an outcome."""
        with self._lock:
            self._probe_in_flight = False

    async def call(self, operation: Operation[T]) -> T:
        self.before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self.release_probe()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._last_failure_time = None
            self._state = CircuitState.CLOSED
            self._probe_in_flight = False
        self._logger.info("Circuit breaker %s manually reset", self.name)


# =============================================================================
# Retry
# =============================================================================


class RetryPolicy(BaseModel):
    """How retries are performed. Stateless and reusable."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, ge=1, description="Total attempts, first call included")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Seconds before the first retry")
    max_delay: float = Field(default=30.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True

    def next_delay(self, delay: float) -> float:
        return min(delay * self.multiplier, self.max_delay)

    def apply_jitter(self, delay: float, rng: random.Random | None = None) -> float:
        if not self.jitter:
            return delay
        roll = (rng or random).random()
        return delay + delay * JITTER_FACTOR * (roll * 2 - 1)


DEFAULT_RETRY_POLICY = RetryPolicy()

_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "temporary",
    "connection refused",
    "connection reset",
    "rate limit",
    "too many requests",
    "service unavailable",
    "unavailable",
    "gateway timeout",
    "deadline exceeded",
    "overloaded",
)
_RETRYABLE_STATUS = re.compile(r"\b(429|5\d\d)\b")


def is_retryable_error(error: BaseException | None) -> bool:
    """
    Classify an error as transient.

    ContextLoopErrors carry an explicit flag and an open breaker is never
    retried. Other exceptions are retryable when they say so, when they are
    timeouts or connection errors, or when the message matches a known
    transient pattern.
    """
    if error is None or isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, ContextLoopError):
        return error.retryable
    if getattr(error, "retryable", False):
        return True
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in _RETRYABLE_PATTERNS):
        return True
    return bool(_RETRYABLE_STATUS.search(message))


class RetryExecutor:
    """
    Runs an operation with exponential backoff.

    Non-retryable errors propagate immediately. Cancellation is checked
    before every retry and interrupts the back-off sleep. When every
    attempt fails, RetryExhaustedError is raised chained to the last error.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep
        self._rng = rng
        self._logger = logger or logging.getLogger(__name__)

    async def run(
        self,
        operation: Operation[T],
        cancel_event: asyncio.Event | None = None,
        is_retryable: Callable[[BaseException], bool] | None = None,
    ) -> T:
        classify = is_retryable or is_retryable_error
        policy = self.policy
        delay = policy.initial_delay
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                error = e
            else:
                if attempt > 1:
                    self._logger.info("Operation succeeded after retry (attempt %d)", attempt)
                return result

            if isinstance(error, CircuitOpenError) or not classify(error):
                self._logger.debug("Error is not retryable (attempt %d): %s", attempt, error)
                raise error

            if attempt >= policy.max_attempts:
                self._logger.warning("Max retry attempts reached (%d): %s", attempt, error)
                raise RetryExhaustedError(policy.max_attempts, error) from error

            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled() from error

            wait = policy.apply_jitter(delay, self._rng)
            self._logger.info("Retrying after error (attempt %d, delay %.2fs): %s", attempt, wait, error)
            await self._wait(wait, cancel_event)
            delay = policy.next_delay(delay)

    async def _wait(self, delay: float, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

        if cancel_event.is_set():
            raise OperationCancelled("operation canceled during retry backoff")


async def retry_with_policy(
    operation: Operation[T],
    policy: RetryPolicy | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Shortcut for ``RetryExecutor(policy).run(operation, cancel_event)``."""
    return await RetryExecutor(policy).run(operation, cancel_event)


# =============================================================================
# Error recovery context
# =============================================================================


class ErrorRecoveryContext:
    """
    Consecutive-error accounting and per-key circuit breakers for an agent.

    ``record_error`` returns True once ``max_consecutive_errors`` is reached,
    the signal to stop iterating rather than keep failing.
    """

    def __init__(
        self,
        max_consecutive_errors: int = defaults.DEFAULT_MAX_CONSECUTIVE_ERRORS,
        breaker_factory: Callable[[str], CircuitBreaker] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_consecutive_errors = max_consecutive_errors
        self._logger = logger or logging.getLogger(__name__)
        self._breaker_factory = breaker_factory or self._default_breaker
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._consecutive_errors = 0

    def _default_breaker(self, key: str) -> CircuitBreaker:
        return CircuitBreaker(
            DEFAULT_BREAKER_MAX_FAILURES,
            DEFAULT_BREAKER_RESET_TIMEOUT,
            name=key,
            logger=self._logger,
        )

    @property
    def consecutive_errors(self) -> int:
        with self._lock:
            return self._consecutive_errors

    def get_circuit_breaker(self, key: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = self._breaker_factory(key)
                self._breakers[key] = breaker
            return breaker

    def record_error(self, error: BaseException | str | None = None) -> bool:
        with self._lock:
            self._consecutive_errors += 1
            self._logger.debug(
                "Error recorded (consecutive=%d, max=%d): %s",
                self._consecutive_errors,
                self.max_consecutive_errors,
                error,
            )
            return self._consecutive_errors >= self.max_consecutive_errors

    def record_success(self) -> None:
        with self._lock:
            if self._consecutive_errors:
                self._logger.debug("Success after %d consecutive errors", self._consecutive_errors)
            self._consecutive_errors = 0

    def should_stop(self) -> bool:
        with self._lock:
            return self._consecutive_errors >= self.max_consecutive_errors

    def reset(self) -> None:
        with self._lock:
            self._consecutive_errors = 0
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
        self._logger.info("Error recovery context reset")

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            breakers = dict(self._breakers)
            consecutive = self._consecutive_errors
        return {
            "consecutive_errors": consecutive,
            "max_consecutive_errors": self.max_consecutive_errors,
            "circuit_breakers": {key: breaker.state.value for key, breaker in breakers.items()},
            "should_stop": consecutive >= self.max_consecutive_errors,
        }
