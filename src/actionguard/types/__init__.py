"""Core types for actionguard."""

from actionguard.types.hooks import HookCommand, HookEvent, HookResult
from actionguard.types.journal import JournalAction, JournalEntry
from actionguard.types.mcp import (
    McpServerConfig,
    ServerHealth,
    ToolCallRequest,
    ToolInfo,
    ToolResult,
    TransportKind,
)
from actionguard.types.patch import (
    DryRunResult,
    FileChange,
    Finding,
    SanitizedDiff,
    Severity,
    UnifiedDiff,
)
from actionguard.types.permissions import (
    ConfigScope,
    Decision,
    PermissionAction,
    PermissionQuery,
    PermissionRule,
    PermissionSet,
    RuleMatch,
)

__all__ = [
    # Hooks
    "HookCommand",
    "HookEvent",
    "HookResult",
    # Journal
    "JournalAction",
    "JournalEntry",
    # Tool servers
    "McpServerConfig",
    "ServerHealth",
    "ToolCallRequest",
    "ToolInfo",
    "ToolResult",
    "TransportKind",
    # Diffs
    "DryRunResult",
    "FileChange",
    "Finding",
    "SanitizedDiff",
    "Severity",
    "UnifiedDiff",
    # Permissions
    "ConfigScope",
    "Decision",
    "PermissionAction",
    "PermissionQuery",
    "PermissionRule",
    "PermissionSet",
    "RuleMatch",
]
