"""Tool-call dispatch to MCP servers over stdio, HTTP and SSE."""

from actionguard.mcp.bridge import RetryPolicy, ToolDispatchBridge
from actionguard.mcp.parser import parse_tool_call, parse_tool_calls
from actionguard.mcp.registry import ServerRegistry, server_from_dict
from actionguard.mcp.transports import (
    HttpTransport,
    SseTransport,
    StdioTransport,
    Transport,
    create_transport,
)

__all__ = [
    "HttpTransport",
    "RetryPolicy",
    "ServerRegistry",
    "SseTransport",
    "StdioTransport",
    "ToolDispatchBridge",
    "Transport",
    "create_transport",
    "parse_tool_call",
    "parse_tool_calls",
    "server_from_dict",
]
