"""Tool server and tool-call types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TransportKind(Enum):
    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


@dataclass(frozen=True, slots=True)
class McpServerConfig:
    """Registry entry for one tool server."""

    id: str
    transport: TransportKind = TransportKind.HTTP
    url: str | None = None  # http / sse
    command: str | None = None  # stdio
    args: tuple[str, ...] = ()
    headers: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    persistent: bool = True  # stdio: reuse one child across calls
    timeout: float | None = None  # default per-call deadline, seconds

    @property
    def endpoint(self) -> str:
        if self.transport is TransportKind.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "transport": self.transport.value}
        if self.url is not None:
            data["url"] = self.url
        if self.command is not None:
            data["command"] = self.command
        if self.args:
            data["args"] = list(self.args)
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.env:
            data["env"] = dict(self.env)
        if not self.persistent:
            data["persistent"] = False
        if self.timeout is not None:
            data["timeout"] = self.timeout
        return data


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A structured request to run ``tool_name`` on ``server_id``."""

    server_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolInfo:
    """A tool advertised by a server."""

    server: str
    name: str
    description: str = ""
    input_schema: dict[str, Any] | None = None


@dataclass(slots=True)
class ToolResult:
    """Structured result of a tool call, echoed back to the caller."""

    server_id: str
    tool_name: str
    content: Any
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class ServerHealth:
    id: str
    ok: bool
    status: int | None = None
    error: str | None = None
