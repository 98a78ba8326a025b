# contextloop/execution/permissions.py
"""Permission gate interface and tool-to-permission mapping."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from .tools import Tool

logger = logging.getLogger(__name__)

READ_ONLY_FILE_TOOLS = frozenset({"core.read", "core.glob", "core.grep"})
RESOURCE_KEYS = ("file_path", "path", "pattern", "command", "url")


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    NETWORK = "network"
    MCP = "mcp"


class PermissionRequest(BaseModel):
    permission: Permission
    resource: str = ""
    operation: str = ""
    reason: str = ""
    tool_name: str = ""


@runtime_checkable
class PermissionGate(Protocol):
    """Grants or denies a capability on a resource, e.g. by prompting the user."""

    async def check(self, request: PermissionRequest) -> bool: ...


class StaticPermissionGate:
    """
    Gate with a fixed set of granted permissions.

    Every request is recorded in ``requests`` so callers can inspect what
    was asked.
    """

    def __init__(self, granted: Iterable[Permission] = tuple(Permission)) -> None:
        self.granted = frozenset(granted)
        self.requests: list[PermissionRequest] = []

    async def check(self, request: PermissionRequest) -> bool:
        self.requests.append(request)
        allowed = request.permission in self.granted
        logger.debug(
            "Permission %s for %s on %r: %s",
            request.permission.value,
            request.tool_name,
            request.resource,
            "granted" if allowed else "denied",
        )
        return allowed


def determine_permission(tool: Tool) -> Permission:
    """Map a tool to the capability it needs; unknown categories require write."""
    explicit = getattr(tool, "permission", None)
    if explicit is not None:
        return Permission(explicit)

    category = tool.category
    if category == "file":
        return Permission.READ if tool.name in READ_ONLY_FILE_TOOLS else Permission.WRITE
    if category == "exec":
        return Permission.EXECUTE
    if category == "web":
        return Permission.NETWORK
    if category == "mcp":
        return Permission.MCP
    return Permission.WRITE


def determine_resource(arguments: Mapping[str, Any]) -> str:
    """The resource a call touches, taken from the first well-known argument."""
    for key in RESOURCE_KEYS:
        if key in arguments and arguments[key] is not None:
            return str(arguments[key])
    return ""
