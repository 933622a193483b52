"""actionguard: policy-gated patches and tool calls for coding agents.

Usage:
    from actionguard import ActionMediator

    async with ActionMediator(repo_root) as mediator:
        if (await mediator.dry_run_apply(diff)).ok:
            await mediator.apply_patch(diff)
        result = await mediator.call_tool("files", "read_file", {"path": "README.md"})
"""

from actionguard.errors import (
    ConflictError,
    HookError,
    JournalWriteFailure,
    MediationError,
    NotAVersionControlRepo,
    NotFoundError,
    OperationTimeout,
    PermissionConfirmRequired,
    PermissionDenied,
    ToolExecutionError,
    TransportError,
    ValidationError,
)
from actionguard.mediator import ActionMediator
from actionguard.types.hooks import HookCommand, HookEvent, HookResult
from actionguard.types.journal import JournalAction, JournalEntry
from actionguard.types.mcp import McpServerConfig, ToolCallRequest, ToolResult, TransportKind
from actionguard.types.patch import DryRunResult, SanitizedDiff, UnifiedDiff
from actionguard.types.permissions import (
    PermissionAction,
    PermissionQuery,
    PermissionRule,
    PermissionSet,
    RuleMatch,
)

__version__ = "0.1.0"

__all__ = [
    # Core API
    "ActionMediator",
    # Errors
    "ConflictError",
    "HookError",
    "JournalWriteFailure",
    "MediationError",
    "NotAVersionControlRepo",
    "NotFoundError",
    "OperationTimeout",
    "PermissionConfirmRequired",
    "PermissionDenied",
    "ToolExecutionError",
    "TransportError",
    "ValidationError",
    # Patches
    "DryRunResult",
    "JournalAction",
    "JournalEntry",
    "SanitizedDiff",
    "UnifiedDiff",
    # Permissions
    "PermissionAction",
    "PermissionQuery",
    "PermissionRule",
    "PermissionSet",
    "RuleMatch",
    # Hooks
    "HookCommand",
    "HookEvent",
    "HookResult",
    # Tool servers
    "McpServerConfig",
    "ToolCallRequest",
    "ToolResult",
    "TransportKind",
]
