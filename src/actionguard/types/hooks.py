"""Hook types for mediated actions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class HookEvent(Enum):
    """Points around a mediated action where hooks can run."""

    PRE_PROMPT = "pre-prompt"
    POST_RESPONSE = "post-response"
    PRE_APPLY = "pre-apply"
    POST_APPLY = "post-apply"


@dataclass(frozen=True, slots=True)
class HookCommand:
    """A configured hook command."""

    event: HookEvent
    run: str
    timeout: float = 30.0  # seconds
    required: bool = False


@dataclass(frozen=True, slots=True)
class HookResult:
    """Result from running a hook."""

    hook: HookCommand
    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False
