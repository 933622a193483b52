"""Find tool-call payloads in assistant text.

Canonical form, inside a fenced JSON block::

    {"tool_call": {"server": "<id>", "name": "<tool>", "input": {...}}}
"""

from __future__ import annotations

import json
import re
from typing import Any

from actionguard.errors import ValidationError
from actionguard.types.mcp import ToolCallRequest

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n([\s\S]*?)\n[ \t]*```")
_INLINE_RE = re.compile(r"\{[\s\S]*\}")
_SLASH_RE = re.compile(r"/mcp\s+run\s+(\S+)\s+(\S+)\s+([\s\S]+)")


def _from_wrapper(obj: Any) -> ToolCallRequest | None:
    """Read the canonical ``{"tool_call": {...}}`` wrapper."""
    if not isinstance(obj, dict):
        return None
    tc = obj.get("tool_call")
    if not isinstance(tc, dict):
        return None
    server, name = tc.get("server"), tc.get("name")
    if not server or not name:
        raise ValidationError("tool_call is missing 'server' or 'name'")
    tool_input = tc.get("input") or {}
    if not isinstance(tool_input, dict):
        raise ValidationError("tool_call 'input' must be a JSON object")
    return ToolCallRequest(server_id=str(server), tool_name=str(name), input=tool_input)


def _from_loose(obj: Any) -> ToolCallRequest | None:
    """Accept the looser key spellings models tend to produce."""
    if not isinstance(obj, dict):
        return None
    server = obj.get("server") or obj.get("mcp_server") or obj.get("provider")
    name = obj.get("name") or obj.get("tool") or obj.get("tool_name")
    tool_input = obj.get("input") or obj.get("arguments") or obj.get("params") or {}
    if not server or not name or not isinstance(tool_input, dict):
        return None
    return ToolCallRequest(server_id=str(server), tool_name=str(name), input=tool_input)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def parse_tool_calls(text: str, *, strict: bool = True) -> list[ToolCallRequest]:
    """Return every tool call found in fenced JSON blocks, in order.

    Blocks that are not JSON, or are JSON without a tool call, are ignored.
    A ``tool_call`` wrapper missing ``server``/``name`` raises
    :class:`ValidationError`.
    """
    calls: list[ToolCallRequest] = []
    for block in _FENCE_RE.findall(text or ""):
        obj = _loads(block)
        call = _from_wrapper(obj)
        if call is None and not strict:
            call = _from_loose(obj)
        if call is not None:
            calls.append(call)
    if not calls and not strict:
        call = _parse_unfenced(text or "")
        if call is not None:
            calls.append(call)
    return calls


def parse_tool_call(text: str, *, strict: bool = True) -> ToolCallRequest | None:
    """Return the first tool call in *text*, or None."""
    calls = parse_tool_calls(text, strict=strict)
    return calls[0] if calls else None


def _parse_unfenced(text: str) -> ToolCallRequest | None:
    m = _INLINE_RE.search(text)
    if m:
        obj = _loads(m.group(0))
        call = _from_wrapper(obj) or _from_loose(obj)
        if call is not None:
            return call
    m = _SLASH_RE.search(text)
    if m:
        tool_input = _loads(m.group(3).strip())
        if isinstance(tool_input, dict):
            return ToolCallRequest(server_id=m.group(1), tool_name=m.group(2), input=tool_input)
    return None
