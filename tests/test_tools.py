# tests/test_tools.py
"""
Tests for tool schemas, argument handling and the registry.

Covers:
- validate_arguments: required, defaults, kinds, enums, undeclared keys
- parse_tool_arguments for dict, JSON text/bytes and None
- format_tool_result rendering, with and without metadata
- recover_tool_call repairs and ToolCallError phases
- ToolRegistry lookup and advertised definitions
"""

import pytest
from pydantic import ValidationError

from contextloop.exceptions import ContextLoopError, ErrorCode
from contextloop.execution.models import ToolCall, ToolCallPhase
from contextloop.execution.tools import (
    ParameterKind,
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

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

READ_PARAMS = [
    ToolParameter(name="path", kind=ParameterKind.STRING, required=True, description="File to read"),
    ToolParameter(name="limit", kind=ParameterKind.INT, default=100),
    ToolParameter(name="mode", kind=ParameterKind.STRING, enum=["text", "binary"]),
]


# ---------------------------------------------------------------------------
# validate_arguments
# ---------------------------------------------------------------------------


class TestValidateArguments:
    def test_applies_defaults(self):
        assert validate_arguments(READ_PARAMS, {"path": "a.py"}, "core.read") == {"path": "a.py", "limit": 100}

    def test_missing_required(self):
        with pytest.raises(ContextLoopError) as exc_info:
            validate_arguments(READ_PARAMS, {"limit": 5}, "core.read")
        assert exc_info.value.is_code(ErrorCode.VALIDATION)
        assert "missing required parameter path" in str(exc_info.value)
        assert exc_info.value.context["field"] == "path"

    def test_none_counts_as_missing(self):
        with pytest.raises(ContextLoopError):
            validate_arguments(READ_PARAMS, {"path": None}, "core.read")

    def test_wrong_kind(self):
        with pytest.raises(ContextLoopError) as exc_info:
            validate_arguments(READ_PARAMS, {"path": 42}, "core.read")
        assert "expected string" in str(exc_info.value)

    def test_enum_enforced(self):
        with pytest.raises(ContextLoopError):
            validate_arguments(READ_PARAMS, {"path": "a", "mode": "hex"}, "core.read")
        assert validate_arguments(READ_PARAMS, {"path": "a", "mode": "text"})["mode"] == "text"

    def test_undeclared_keys_dropped(self):
        assert validate_arguments(READ_PARAMS, {"path": "a", "extra": 1}) == {"path": "a", "limit": 100}

    @pytest.mark.parametrize(
        "kind,value,expected",
        [
            (ParameterKind.INT, 3.0, 3),
            (ParameterKind.FLOAT, 2, 2.0),
            (ParameterKind.BOOL, False, False),
            (ParameterKind.ARRAY, ("a", "b"), ["a", "b"]),
            (ParameterKind.OBJECT, {"k": 1}, {"k": 1}),
            (ParameterKind.ANY, {1, 2}, {1, 2}),
        ],
    )
    def test_coercion(self, kind, value, expected):
        params = [ToolParameter(name="x", kind=kind, required=True)]
        assert validate_arguments(params, {"x": value}) == {"x": expected}

    @pytest.mark.parametrize(
        "kind,value",
        [
            (ParameterKind.INT, True),
            (ParameterKind.INT, 2.5),
            (ParameterKind.FLOAT, "1.0"),
            (ParameterKind.BOOL, "yes"),
            (ParameterKind.ARRAY, "a,b"),
            (ParameterKind.OBJECT, [1]),
            (ParameterKind.STRING, 3),
            (ParameterKind.INT, "3"),
            (ParameterKind.FLOAT, True),
        ],
    )
    def test_rejected_kinds(self, kind, value):
        params = [ToolParameter(name="x", kind=kind, required=True)]
        with pytest.raises(ContextLoopError):
            validate_arguments(params, {"x": value})

    def test_kind_error_keeps_pydantic_cause(self):
        with pytest.raises(ContextLoopError) as exc_info:
            validate_arguments(READ_PARAMS, {"path": "a", "limit": 2.5}, "core.read")
        assert exc_info.value.context["field"] == "limit"
        assert "expected integer, got float" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValidationError)


# ---------------------------------------------------------------------------
# parse_tool_arguments
# ---------------------------------------------------------------------------


class TestParseToolArguments:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, {}),
            ({"a": 1}, {"a": 1}),
            ('{"a": 1}', {"a": 1}),
            (b'{"a": 1}', {"a": 1}),
            ("", {}),
        ],
    )
    def test_accepted(self, raw, expected):
        assert parse_tool_arguments(raw) == expected

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", 42])
    def test_rejected(self, raw):
        with pytest.raises(ContextLoopError) as exc_info:
            parse_tool_arguments(raw)
        assert exc_info.value.is_code(ErrorCode.VALIDATION)


# ---------------------------------------------------------------------------
# format_tool_result
# ---------------------------------------------------------------------------


class TestFormatToolResult:
    def test_none(self):
        assert format_tool_result(None, "core.read") == "Tool core.read returned no result"

    def test_failure(self):
        assert format_tool_result(ToolResult.fail("no such file"), "core.read") == "Tool core.read failed: no such file"

    def test_string_output(self):
        assert format_tool_result(ToolResult.ok("contents"), "core.read") == "contents"

    def test_bytes_output(self):
        assert format_tool_result(ToolResult.ok(b"raw"), "core.read") == "raw"

    def test_empty_output(self):
        assert format_tool_result(ToolResult.ok(), "core.write") == "Tool core.write completed successfully"

    def test_structured_output(self):
        assert format_tool_result(ToolResult.ok({"files": ["a.py"]}), "core.glob") == '{\n  "files": [\n    "a.py"\n  ]\n}'

    def test_metadata_appended(self):
        result = ToolResult.ok("contents", lines=3, path="a.py")
        assert format_tool_result_with_metadata(result, "core.read") == (
            'contents\n\nMetadata:\n{\n  "lines": 3,\n  "path": "a.py"\n}'
        )

    def test_no_metadata_matches_plain_format(self):
        assert format_tool_result_with_metadata(ToolResult.ok("contents"), "core.read") == "contents"
        assert format_tool_result_with_metadata(None, "core.read") == "Tool core.read returned no result"


# ---------------------------------------------------------------------------
# Malformed calls
# ---------------------------------------------------------------------------


class TestRecoverToolCall:
    def test_nameless_call_rejected(self):
        with pytest.raises(ContextLoopError) as exc_info:
            recover_tool_call(ToolCall(id="c1", name="", arguments={"path": "a"}))
        assert exc_info.value.is_code(ErrorCode.VALIDATION)
        assert "tool call has no name" in str(exc_info.value)

    def test_missing_arguments_become_empty(self):
        recovered = recover_tool_call(ToolCall(id="c1", name="core.read"))
        assert recovered.arguments == {}
        assert recovered.id == "c1"

    def test_nested_object_unwrapped(self):
        call = ToolCall(id="c1", name="core.read", arguments={"arguments": {"path": "a.py"}})
        assert recover_tool_call(call).arguments == {"path": "a.py"}

    def test_nested_json_text_unwrapped(self):
        call = ToolCall(id="c1", name="core.read", arguments='{"arguments": "{\\"path\\": \\"a.py\\"}"}')
        assert recover_tool_call(call).arguments == {"path": "a.py"}

    def test_unparseable_nested_text_kept(self):
        call = ToolCall(id="c1", name="core.run", arguments={"arguments": "--verbose"})
        assert recover_tool_call(call).arguments == {"arguments": "--verbose"}

    def test_regular_arguments_untouched(self):
        call = ToolCall(id="c1", name="core.read", arguments={"path": "a.py", "arguments": {"x": 1}})
        assert recover_tool_call(call).arguments == {"path": "a.py", "arguments": {"x": 1}}

    def test_original_call_not_mutated(self):
        call = ToolCall(id="c1", name="core.read", arguments={"arguments": {"path": "a.py"}})
        recover_tool_call(call)
        assert call.arguments == {"arguments": {"path": "a.py"}}


class TestToolCallError:
    def test_carries_inner_code_and_phase(self):
        inner = ContextLoopError(ErrorCode.TOOL_NOT_FOUND, "tool nope not found")
        error = ToolCallError("nope", "c1", ToolCallPhase.VALIDATION, inner)

        assert error.is_code(ErrorCode.TOOL_NOT_FOUND)
        assert error.phase == ToolCallPhase.VALIDATION
        assert error.error is inner
        assert error.message == "tool call error [nope/validation]"
        assert error.context == {"tool": "nope", "call_id": "c1", "phase": "validation"}
        assert error.__cause__ is inner

    def test_plain_exception_wrapped(self):
        error = ToolCallError("boom", "c2", ToolCallPhase.FORMATTING, RuntimeError("bad output"))

        assert error.is_code(ErrorCode.TOOL_EXECUTION)
        assert isinstance(error.error, ContextLoopError)
        assert isinstance(error.error.cause, RuntimeError)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_register_and_get(self, make_tool):
        tool = make_tool("core.read")
        registry = ToolRegistry([tool])

        assert registry.get("core.read") is tool
        assert "core.read" in registry
        assert len(registry) == 1
        assert registry.all_tools() == [tool]

    def test_missing_tool(self):
        with pytest.raises(ContextLoopError) as exc_info:
            ToolRegistry().get("nope")
        assert exc_info.value.is_code(ErrorCode.TOOL_NOT_FOUND)
        assert exc_info.value.message == "tool nope not found"

    def test_register_replaces(self, make_tool):
        registry = ToolRegistry([make_tool("core.read")])
        replacement = make_tool("core.read")
        registry.register(replacement)
        assert registry.get("core.read") is replacement
        assert len(registry) == 1

    def test_unregister(self, make_tool):
        registry = ToolRegistry([make_tool("core.read")])
        assert registry.unregister("core.read") is True
        assert registry.unregister("core.read") is False

    def test_definitions(self, make_tool):
        registry = ToolRegistry([make_tool("core.read", parameters=READ_PARAMS, description="Read a file")])

        (definition,) = registry.definitions()
        assert definition.name == "core.read"
        assert definition.description == "Read a file"
        assert definition.input_schema == {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File to read"},
                "limit": {"type": "integer"},
                "mode": {"type": "string", "enum": ["text", "binary"]},
            },
            "required": ["path"],
        }
