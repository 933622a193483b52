"""Confirmation channels for ``confirm`` decisions."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Protocol, runtime_checkable

from rich.console import Console
from rich.panel import Panel
from rich.text import Text


@runtime_checkable
class ConfirmationChannel(Protocol):
    """Protocol for asking the user whether a mediated action may proceed."""

    async def request_approval(
        self, tool_name: str, args: dict[str, Any], description: str,
    ) -> bool:
        """Return True if approved, False if declined."""
        ...


def describe_action(tool_name: str, args: dict[str, Any]) -> str:
    """Build a human-readable one-line description of a mediated action."""
    if tool_name == "fs_patch" and "path" in args:
        return f"Patch {args['path']}"
    if "command" in args:
        return f"{tool_name}: {args['command']}"
    if "path" in args:
        return f"{tool_name} on {args['path']}"
    if "server" in args:
        return f"Tool {tool_name} on server {args['server']}"
    # Fallback: tool name + truncated args
    args_str = json.dumps(args, default=str)
    if len(args_str) > 80:
        args_str = args_str[:77] + "..."
    return f"{tool_name}({args_str})"


class StaticConfirmation:
    """Answers every request the same way. Records what was asked."""

    def __init__(self, answer: bool) -> None:
        self._answer = answer
        self.requests: list[tuple[str, dict[str, Any], str]] = []

    async def request_approval(
        self, tool_name: str, args: dict[str, Any], description: str,
    ) -> bool:
        self.requests.append((tool_name, args, description))
        return self._answer


class RichConfirmation:
    """Rich-formatted interactive y/n prompt on stderr."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    async def request_approval(
        self, tool_name: str, args: dict[str, Any], description: str,
    ) -> bool:
        title = Text(f" ◆ {tool_name} ", style="bold #fbbf24")
        body = Text(description, style="#94a3b8")

        self._console.print()
        self._console.print(Panel(
            body,
            title=title,
            border_style="#fbbf24",
            expand=False,
            padding=(0, 1),
        ))

        loop = asyncio.get_running_loop()
        prompt_text = "[bold #fbbf24]Allow?[/bold #fbbf24] [#7c7c8a](y/n)[/#7c7c8a] › "
        try:
            self._console.print(prompt_text, end="")
            answer = await loop.run_in_executor(None, lambda: input(""))
        except (EOFError, KeyboardInterrupt):
            self._console.print()
            return False
        return answer.strip().lower() in ("y", "yes")
