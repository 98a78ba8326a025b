# contextloop/execution/agent.py
"""
Agent - the tool-calling loop.

One run moves through these states:

    calling  -> done        stop reason end_turn / stop_sequence
    calling  -> executing   stop reason tool_use with at least one call
    executing -> calling    after every tool result is in the transcript
    calling  -> done        any other stop reason (complete=False)
    *        -> exhausted   iteration limit reached
    *        -> failed      completion failure after retries, error limit

Each completion call goes through the retry executor wrapped around the
provider's circuit breaker. Tools run one at a time in the order the model
asked for them; a failing tool becomes an error-text tool result instead of
ending the run.

Usage::

    agent = Agent(provider, AgentConfig(model_name="claude-sonnet-4-5"), registry, gate,
                  context_manager=ctx, checkpoint_manager=checkpoints)
    response = await agent.execute(AgentRequest(user_message="Fix the failing test", session_id="s1"))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from contextloop.context.models.enums import ContextItemType
from contextloop.context.models.item import ContextItem
from contextloop.exceptions import (
    ConsecutiveErrorLimit,
    ContextLoopError,
    ErrorCode,
    MaxIterationsExceeded,
    OperationCancelled,
    budget_exceeded_error,
    tool_permission_error,
    wrap,
)

from .cost import CostTracker
from .models import (
    AgentConfig,
    AgentRequest,
    AgentResponse,
    CompletionRequest,
    CompletionResponse,
    Message,
    RunState,
    StopReason,
    ToolCall,
    ToolCallPhase,
    ToolExecution,
    Usage,
)
from .permissions import PermissionGate, PermissionRequest, determine_permission, determine_resource
from .provider import CompletionService
from .resilience import ErrorRecoveryContext, RetryExecutor, RetryPolicy, SleepFn, is_retryable_error
from .tools import (
    Tool,
    ToolCallError,
    ToolRegistry,
    ToolResult,
    format_tool_result,
    format_tool_result_with_metadata,
    recover_tool_call,
    validate_arguments,
)

if TYPE_CHECKING:
    from contextloop.context.checkpoint import CheckpointManager
    from contextloop.context.manager import ContextManager

_DONE_REASONS = (StopReason.END_TURN, StopReason.STOP_SEQUENCE)


def _error_text(error: ContextLoopError) -> str:
    if error.cause is not None:
        return f"Error: {error.message}: {error.cause}"
    return f"Error: {error.message}"


class Agent:
    """Drives completion -> tool execution iterations until the task is done."""

    def __init__(
        self,
        provider: CompletionService,
        config: AgentConfig,
        tool_registry: ToolRegistry,
        permission_gate: PermissionGate,
        *,
        context_manager: ContextManager | None = None,
        checkpoint_manager: CheckpointManager | None = None,
        recovery: ErrorRecoveryContext | None = None,
        retry_policy: RetryPolicy | None = None,
        cost_tracker: CostTracker | None = None,
        logger: logging.Logger | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.config = config
        self.tools = tool_registry
        self.permission_gate = permission_gate
        self.context_manager = context_manager
        self.checkpoint_manager = checkpoint_manager
        self.recovery = recovery or ErrorRecoveryContext()
        self.cost_tracker = cost_tracker or CostTracker()
        self._logger = logger or logging.getLogger(__name__)
        self._retry = RetryExecutor(retry_policy, sleep=sleep, logger=self._logger)

    def update_config(self, config: AgentConfig) -> None:
        self.config = config

    # =========================================================================
    # Loop
    # =========================================================================

    async def execute(
        self,
        request: AgentRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> AgentResponse:
        """
        Run the loop for one request.

        Raises MaxIterationsExceeded or ConsecutiveErrorLimit carrying the
        partial response, OperationCancelled when ``cancel_event`` is set,
        and a wrapped provider error when a completion fails after retries.
        """
        self._logger.info(
            "Starting agent execution (session=%s, model=%s)",
            request.session_id,
            self.config.model_name,
        )

        response = AgentResponse(state=RunState.CALLING)
        messages = [m.model_copy(deep=True) for m in request.history]
        messages.append(Message.user(request.user_message))

        await self._remember(
            request.session_id,
            ContextItem(type=ContextItemType.USER_INTENT, content=request.user_message, relevance=1.0),
        )
        system_prompt = await self._build_system_prompt(request)
        tool_definitions = self.tools.definitions()

        for iteration in range(1, self.config.max_iterations + 1):
            response.iterations = iteration
            response.state = RunState.CALLING
            self._logger.debug("Agent iteration %d/%d", iteration, self.config.max_iterations)

            if cancel_event is not None and cancel_event.is_set():
                response.state = RunState.FAILED
                response.error = "canceled"
                raise OperationCancelled()

            if not self.cost_tracker.check_budget():
                response.state = RunState.FAILED
                error = budget_exceeded_error(self.cost_tracker.daily_spent, self.cost_tracker.daily_budget)
                response.error = error.message
                raise error

            completion_request = CompletionRequest(
                model=self.config.model_name,
                messages=list(messages),
                system_prompt=system_prompt,
                tools=tool_definitions,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                stream=self.config.streaming,
            )

            try:
                completion = await self._complete(completion_request, cancel_event)
            except OperationCancelled:
                response.state = RunState.FAILED
                response.error = "canceled"
                raise
            except Exception as e:
                self.recovery.record_error(e)
                self._logger.error("LLM call failed (iteration %d): %s", iteration, e)
                response.state = RunState.FAILED
                response.error = str(e)
                raise wrap(e, ErrorCode.PROVIDER, "LLM call failed") from e

            self.recovery.record_success()
            response.usage.add(completion.usage)
            self.cost_tracker.add_usage(completion.usage, model_name=self.config.model_name)

            stop_reason = completion.stop_reason
            if stop_reason in _DONE_REASONS:
                messages.append(Message.assistant(completion.content))
                response.content = completion.content
                response.complete = True
                response.state = RunState.DONE
                response.messages = messages
                self._logger.info(
                    "Agent execution complete (iterations=%d, cost=%.4f)",
                    iteration,
                    response.usage.cost,
                )
                return response

            if stop_reason == StopReason.TOOL_USE and completion.tool_calls:
                response.state = RunState.EXECUTING
                messages.append(Message.assistant(completion.content, completion.tool_calls))
                response.messages = messages

                for call in completion.tool_calls:
                    execution, text, ok = await self._execute_tool(call, request.session_id, messages)
                    response.tool_calls.append(execution)
                    messages.append(Message.tool(call.id, call.name, text))
                    await self._remember(
                        request.session_id,
                        ContextItem(
                            type=ContextItemType.TOOL_RESULT,
                            content=text,
                            relevance=self._result_relevance(ok),
                            metadata={"tool": call.name, "call_id": call.id, "success": ok},
                        ),
                    )

                    if ok:
                        self.recovery.record_success()
                    elif self.recovery.record_error(execution.result):
                        response.state = RunState.FAILED
                        response.error = f"too many consecutive errors (last: {execution.result})"
                        self._logger.warning(
                            "Agent stopping after %d consecutive errors",
                            self.recovery.consecutive_errors,
                        )
                        raise ConsecutiveErrorLimit(self.recovery.consecutive_errors, response)
                continue

            self._logger.warning("Agent stopped with unexpected reason: %s", stop_reason.value)
            messages.append(Message.assistant(completion.content))
            response.content = completion.content
            response.complete = False
            response.state = RunState.DONE
            response.messages = messages
            return response

        self._logger.warning("Agent reached max iterations (%d)", self.config.max_iterations)
        response.complete = False
        response.state = RunState.EXHAUSTED
        response.messages = messages
        response.error = f"maximum iterations ({self.config.max_iterations}) reached"
        raise MaxIterationsExceeded(self.config.max_iterations, response)

    # =========================================================================
    # Completion
    # =========================================================================

    async def _complete(
        self,
        request: CompletionRequest,
        cancel_event: asyncio.Event | None,
    ) -> CompletionResponse:
        breaker = self.recovery.get_circuit_breaker(self.provider.name)

        async def attempt() -> CompletionResponse:
            if self.config.streaming and self.provider.supports_streaming():
                return await breaker.call(lambda: self._stream(request))
            return await breaker.call(lambda: self.provider.create_completion(request))

        def classify(error: BaseException) -> bool:
            return is_retryable_error(error) or self.provider.is_retryable(error)

        return await self._retry.run(attempt, cancel_event=cancel_event, is_retryable=classify)

    async def _stream(self, request: CompletionRequest) -> CompletionResponse:
        content: list[str] = []
        tool_calls: list[ToolCall] = []
        usage = Usage()
        stop_reason: StopReason | None = None

        async for token in self.provider.stream_completion(request):
            if token.content:
                content.append(token.content)
            if token.tool_call is not None:
                tool_calls.append(token.tool_call)
            if token.done:
                if token.usage is not None:
                    usage = token.usage
                stop_reason = token.stop_reason
                break

        if stop_reason is None:
            stop_reason = StopReason.TOOL_USE if tool_calls else StopReason.END_TURN
        return CompletionResponse(
            content="".join(content),
            tool_calls=tool_calls,
            stop_reason=stop_reason,
            usage=usage,
            model=request.model,
        )

    # =========================================================================
    # Tools
    # =========================================================================

    async def _execute_tool(
        self,
        call: ToolCall,
        session_id: str,
        messages: list[Message],
    ) -> tuple[ToolExecution, str, bool]:
        """Validate, permission-check and run one call. Returns (record, text for the model, ok)."""
        execution = ToolExecution(tool_name=call.name, call_id=call.id)
        self._logger.debug("Executing tool %s (call %s)", call.name, call.id)

        try:
            tool, arguments = self._prepare_call(call, execution)
            result = await self._run_tool(tool, arguments, call, session_id, messages, execution)
            text = self._format_result(result, call)
        except ToolCallError as e:
            self._logger.debug("%s: %s", e.message, e.error)
            text = _error_text(e.error)
            execution.result = text
            execution.success = False
            execution.phase = e.phase
            return execution, text, False

        execution.result = text
        ok = result is not None and result.success
        execution.success = ok
        return execution, text, ok

    def _prepare_call(self, call: ToolCall, execution: ToolExecution) -> tuple[Tool, dict[str, Any]]:
        try:
            recovered = recover_tool_call(call)
            execution.arguments = dict(recovered.arguments or {})
            tool = self.tools.get(recovered.name)
            arguments = validate_arguments(tool.parameters, recovered.arguments, tool.name)
        except ContextLoopError as e:
            raise ToolCallError(call.name, call.id, ToolCallPhase.VALIDATION, e) from e
        execution.arguments = arguments
        return tool, arguments

    async def _run_tool(
        self,
        tool: Tool,
        arguments: dict[str, Any],
        call: ToolCall,
        session_id: str,
        messages: list[Message],
        execution: ToolExecution,
    ) -> ToolResult | None:
        try:
            if tool.requires_permission:
                granted = await self._check_permission(tool, arguments)
                execution.permission_granted = granted
                if not granted:
                    raise tool_permission_error(tool.name, f"execute {tool.name}")

            if tool.destructive:
                await self._auto_checkpoint(session_id, tool.name, messages)

            started = time.monotonic()
            try:
                result = await tool.execute(arguments)
            except Exception as e:
                self._logger.error("Tool %s execution failed: %s", tool.name, e)
                raise ContextLoopError(
                    ErrorCode.TOOL_EXECUTION,
                    f"tool {tool.name} execution failed",
                    cause=e,
                ) from e
        except ContextLoopError as e:
            raise ToolCallError(call.name, call.id, ToolCallPhase.EXECUTION, e) from e

        if result is not None:
            result.duration = time.monotonic() - started
        return result

    def _format_result(self, result: ToolResult | None, call: ToolCall) -> str:
        try:
            if self.config.include_tool_metadata:
                return format_tool_result_with_metadata(result, call.name)
            return format_tool_result(result, call.name)
        except Exception as e:
            error = ContextLoopError(ErrorCode.TOOL, f"failed to format result of tool {call.name}", cause=e)
            raise ToolCallError(call.name, call.id, ToolCallPhase.FORMATTING, error) from e

    async def _check_permission(self, tool: Tool, arguments: dict[str, Any]) -> bool:
        request = PermissionRequest(
            permission=determine_permission(tool),
            resource=determine_resource(arguments),
            operation=f"execute {tool.name}",
            reason="Tool execution requested by agent",
            tool_name=tool.name,
        )
        try:
            return await self.permission_gate.check(request)
        except Exception as e:
            raise ContextLoopError(
                ErrorCode.TOOL_PERMISSION,
                f"failed to request permission for tool {tool.name}",
                cause=e,
            ) from e

    async def _auto_checkpoint(self, session_id: str, operation: str, messages: list[Message]) -> None:
        if self.checkpoint_manager is None or self.context_manager is None or not session_id:
            return
        try:
            snapshot = await self.context_manager.create_snapshot(session_id)
            await self.checkpoint_manager.create_auto_checkpoint(session_id, operation, snapshot, messages)
        except ContextLoopError as e:
            self._logger.warning("Auto-checkpoint before %s failed: %s", operation, e)

    # =========================================================================
    # Context
    # =========================================================================

    async def _remember(self, session_id: str, item: ContextItem) -> None:
        if self.context_manager is None or not session_id:
            return
        try:
            await self.context_manager.add_item(session_id, item)
        except ContextLoopError as e:
            self._logger.warning("Failed to add %s item to session %s: %s", item.type.value, session_id, e)

    def _result_relevance(self, ok: bool) -> float:
        """Tool results stay evictable; failed ones go first."""
        if ok:
            return self.config.tool_result_relevance
        return self.config.failed_tool_result_relevance

    async def _build_system_prompt(self, request: AgentRequest) -> str:
        context = request.context
        if not context and self.context_manager is not None and request.session_id:
            items = await self.context_manager.get_context(request.session_id, self.config.context_tokens)
            context = self.context_manager.render(items)

        if not context:
            return self.config.system_prompt
        if not self.config.system_prompt:
            return f"<context>\n{context}\n</context>"
        return f"{self.config.system_prompt}\n\n<context>\n{context}\n</context>"
