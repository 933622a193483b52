"""Error kinds raised by the mediation layer."""

from __future__ import annotations

from typing import Any


class MediationError(Exception):
    """Base class for every error surfaced to the orchestrator."""


class ValidationError(MediationError):
    """Malformed diff, rule, payload or registry entry."""


class NotAVersionControlRepo(MediationError):
    """The project root is not inside a git work tree."""

    def __init__(self, root: str, detail: str = "") -> None:
        msg = (
            f"Patch operations require a Git repository at {root}. "
            "Run `git init` first."
        )
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.root = root


class PermissionDenied(MediationError):
    """A policy rule, default or the user refused the action."""

    def __init__(self, tool: str, reason: str = "denied by policy") -> None:
        super().__init__(f"Permission denied for {tool}: {reason}")
        self.tool = tool
        self.reason = reason


class PermissionConfirmRequired(MediationError):
    """Policy asks for confirmation but no confirmation channel is available."""

    def __init__(self, tool: str) -> None:
        super().__init__(
            f"{tool} requires confirmation but no confirmation channel is configured"
        )
        self.tool = tool


class ConflictError(MediationError):
    """git refused to apply (or reverse-apply) a diff."""

    def __init__(self, message: str, conflicts: list[str]) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


class TransportError(MediationError):
    """Failure talking to a tool server.

    ``transient`` failures (connection reset, 5xx, child exited) are retried
    by the bridge; permanent ones (4xx, malformed responses) are not.
    """

    def __init__(self, message: str, *, transient: bool, status: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status = status


class OperationTimeout(MediationError, TimeoutError):
    """An operation exceeded its deadline. Resources were released first."""


class JournalWriteFailure(MediationError):
    """The undo journal could not be persisted after a successful change."""

    def __init__(self, message: str, entry: Any = None) -> None:
        super().__init__(message)
        self.entry = entry


class NotFoundError(MediationError):
    """Unknown server id, tool or registry entry."""


class ToolExecutionError(MediationError):
    """A tool call failed. Carries transport diagnostics."""

    def __init__(
        self,
        message: str,
        *,
        server_id: str = "",
        tool_name: str = "",
        transport: str = "",
        attempts: int = 0,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.server_id = server_id
        self.tool_name = tool_name
        self.transport = transport
        self.attempts = attempts
        self.details = details

    @property
    def diagnostics(self) -> dict[str, Any]:
        return {
            "server": self.server_id,
            "tool": self.tool_name,
            "transport": self.transport,
            "attempts": self.attempts,
            "cause": repr(self.__cause__) if self.__cause__ else None,
            "details": self.details,
        }


class HookError(MediationError):
    """A hook marked ``required`` failed."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
