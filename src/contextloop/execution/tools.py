# contextloop/execution/tools.py
"""
Tool schema, argument validation and the tool registry.

Tools declare their parameters as a tagged schema (name, kind, required,
default). ``validate_arguments`` turns the model's open key-value input
into a checked argument dict or raises a validation error naming the bad
field.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Annotated, Any, Protocol, runtime_checkable

from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
)

from contextloop.exceptions import ContextLoopError, ErrorCode, validation_error, wrap

from .models import ToolCall, ToolCallPhase, ToolDefinition

logger = logging.getLogger(__name__)

# =============================================================================
# Models
# =============================================================================


class ParameterKind(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


_JSON_SCHEMA_TYPES: dict[ParameterKind, str] = {
    ParameterKind.STRING: "string",
    ParameterKind.INT: "integer",
    ParameterKind.FLOAT: "number",
    ParameterKind.BOOL: "boolean",
    ParameterKind.ARRAY: "array",
    ParameterKind.OBJECT: "object",
}


class ToolParameter(BaseModel):
    """One declared tool parameter."""

    name: str
    kind: ParameterKind = ParameterKind.STRING
    required: bool = False
    default: Any = None
    description: str = ""
    enum: list[Any] | None = Field(default=None, description="Allowed values, when restricted")

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {}
        json_type = _JSON_SCHEMA_TYPES.get(self.kind)
        if json_type:
            schema["type"] = json_type
        if self.description:
            schema["description"] = self.description
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


class ToolResult(BaseModel):
    """Outcome of one tool execution."""

    success: bool = True
    output: Any = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    duration: float = Field(default=0.0, description="Seconds spent executing")

    @classmethod
    def ok(cls, output: Any = None, **metadata: Any) -> ToolResult:
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> ToolResult:
        return cls(success=False, error=error, metadata=metadata)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class Tool(Protocol):
    """
    A tool the agent can call.

    ``category`` drives the permission mapping (file, exec, web, mcp).
    Destructive tools trigger an auto-checkpoint before they run.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def parameters(self) -> list[ToolParameter]: ...

    @property
    def category(self) -> str: ...

    @property
    def requires_permission(self) -> bool: ...

    @property
    def destructive(self) -> bool: ...

    async def execute(self, arguments: dict[str, Any]) -> ToolResult: ...


# =============================================================================
# Validation
# =============================================================================


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("bool is not a number")
    return value


def _integral(value: Any) -> Any:
    value = _reject_bool(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _widen(value: Any) -> Any:
    value = _reject_bool(value)
    if isinstance(value, int):
        return float(value)
    return value


# ANY has no adapter; its values pass through untouched
_KIND_ADAPTERS: dict[ParameterKind, TypeAdapter[Any]] = {
    ParameterKind.STRING: TypeAdapter(StrictStr),
    ParameterKind.INT: TypeAdapter(Annotated[StrictInt, BeforeValidator(_integral)]),
    ParameterKind.FLOAT: TypeAdapter(Annotated[StrictFloat, BeforeValidator(_widen)]),
    ParameterKind.BOOL: TypeAdapter(StrictBool),
    ParameterKind.ARRAY: TypeAdapter(list[Any]),
    ParameterKind.OBJECT: TypeAdapter(dict[Any, Any]),
}


def _check_kind(value: Any, kind: ParameterKind) -> Any:
    """Return the value coerced to the declared kind; raises pydantic's ValidationError."""
    adapter = _KIND_ADAPTERS.get(kind)
    if adapter is None:
        return value
    return adapter.validate_python(value)


def _kind_error(value: Any, kind: ParameterKind, error: ValidationError) -> str:
    expected = _JSON_SCHEMA_TYPES.get(kind, kind.value)
    detail = error.errors()[0]["msg"] if error.errors() else str(error)
    return f"expected {expected}, got {type(value).__name__} ({detail})"


def validate_arguments(
    parameters: Iterable[ToolParameter],
    raw: Mapping[str, Any] | None,
    tool_name: str = "",
) -> dict[str, Any]:
    """
    Check raw arguments against a parameter schema.

    Missing optional parameters take their default; undeclared keys are
    dropped. A missing required parameter or a value of the wrong kind
    raises a validation error.
    """
    raw = raw or {}
    declared = {param.name: param for param in parameters}
    checked: dict[str, Any] = {}

    for name, param in declared.items():
        value = raw.get(name)
        if value is None:
            if param.required:
                raise validation_error(name, f"missing required parameter {name} for tool {tool_name}")
            if param.default is not None:
                checked[name] = param.default
            continue

        try:
            value = _check_kind(value, param.kind)
        except ValidationError as e:
            reason = _kind_error(value, param.kind, e)
            raise validation_error(name, f"invalid type for parameter {name} in tool {tool_name}: {reason}") from e

        if param.enum is not None and value not in param.enum:
            raise validation_error(name, f"value {value!r} not allowed for parameter {name} in tool {tool_name}")
        checked[name] = value

    unknown = set(raw) - set(declared)
    if unknown:
        logger.debug("Ignoring undeclared arguments for tool %s: %s", tool_name, sorted(unknown))
    return checked


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Normalize tool arguments from a dict, JSON text, JSON bytes or None."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes, bytearray)):
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise validation_error("arguments", "failed to parse tool arguments from JSON") from e
        if not isinstance(parsed, dict):
            raise validation_error("arguments", f"tool arguments must be a JSON object, got {type(parsed).__name__}")
        return parsed
    raise validation_error("arguments", f"unsupported tool arguments type: {type(raw).__name__}")


def format_tool_result(result: ToolResult | None, tool_name: str) -> str:
    """Render a tool result as text for the model."""
    if result is None:
        return f"Tool {tool_name} returned no result"
    if not result.success:
        return f"Tool {tool_name} failed: {result.error or 'unknown error'}"

    output = result.output
    if output is None:
        return f"Tool {tool_name} completed successfully"
    if isinstance(output, str):
        return output
    if isinstance(output, (bytes, bytearray)):
        return output.decode("utf-8", errors="replace")
    try:
        return json.dumps(output, indent=2, default=str)
    except (TypeError, ValueError):
        return str(output)


def format_tool_result_with_metadata(result: ToolResult | None, tool_name: str) -> str:
    """``format_tool_result`` followed by the result's metadata as indented JSON."""
    base = format_tool_result(result, tool_name)
    if result is None or not result.metadata:
        return base
    try:
        metadata = json.dumps(result.metadata, indent=2, default=str)
    except (TypeError, ValueError):
        return base
    return f"{base}\n\nMetadata:\n{metadata}"


# =============================================================================
# Malformed calls
# =============================================================================


def recover_tool_call(call: ToolCall) -> ToolCall:
    """
    Repair the common ways models garble a tool call.

    A call without a name cannot be repaired. Missing arguments become an
    empty object, and arguments wrapped a second time under a lone
    ``arguments`` key (as an object or as JSON text) are unwrapped.
    """
    if not call.name:
        raise validation_error("name", "tool call has no name")

    arguments = parse_tool_arguments(call.arguments)
    if len(arguments) == 1 and "arguments" in arguments:
        nested = arguments["arguments"]
        if isinstance(nested, Mapping):
            arguments = dict(nested)
        elif isinstance(nested, str):
            try:
                parsed = json.loads(nested)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                arguments = parsed

    return call.model_copy(update={"arguments": arguments}, deep=True)


class ToolCallError(ContextLoopError):
    """
    A failure while handling one tool call, tagged with the phase it came from.

    Carries the code and flags of the underlying error; anything that is not
    already a ContextLoopError is wrapped as a tool execution error.
    """

    def __init__(self, tool_name: str, call_id: str, phase: ToolCallPhase, error: BaseException) -> None:
        if not isinstance(error, ContextLoopError):
            error = wrap(error, ErrorCode.TOOL_EXECUTION, f"tool {tool_name} {phase.value} failed")
        super().__init__(
            error.code,
            f"tool call error [{tool_name}/{phase.value}]",
            user_message=error.user_message,
            cause=error,
            retryable=error.retryable,
            recoverable=error.recoverable,
            context={**error.context, "tool": tool_name, "call_id": call_id, "phase": phase.value},
        )
        self.tool_name = tool_name
        self.call_id = call_id
        self.phase = phase
        self.error = error


# =============================================================================
# Registry
# =============================================================================


class ToolRegistry:
    """Name -> tool lookup, in registration order."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ContextLoopError(
                ErrorCode.TOOL_NOT_FOUND,
                f"tool {name} not found",
                context={"tool": name},
            )
        return tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[ToolDefinition]:
        """Tool schemas in the shape advertised to the model."""
        definitions = []
        for tool in self._tools.values():
            params = tool.parameters
            definitions.append(
                ToolDefinition(
                    name=tool.name,
                    description=tool.description,
                    input_schema={
                        "type": "object",
                        "properties": {p.name: p.json_schema() for p in params},
                        "required": [p.name for p in params if p.required],
                    },
                )
            )
        return definitions
