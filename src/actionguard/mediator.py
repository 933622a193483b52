"""ActionMediator: the entry point the orchestrator talks to.

Owns one PolicyEngine, PatchApplier, HookRunner and ToolDispatchBridge for a
project root. Nothing here is module-global; create one mediator per root.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from actionguard.core.config import LayeredConfig
from actionguard.errors import PermissionConfirmRequired, PermissionDenied
from actionguard.hooks.runner import HookRunner
from actionguard.mcp.bridge import RetryPolicy, ToolDispatchBridge
from actionguard.mcp.parser import parse_tool_calls
from actionguard.mcp.registry import ServerRegistry
from actionguard.patch.applier import PatchApplier
from actionguard.patch.inspect import diff_files, has_high_severity, review_patch
from actionguard.patch.journal import JournalStore
from actionguard.permissions.approval import ConfirmationChannel, describe_action
from actionguard.permissions.engine import PolicyEngine
from actionguard.types.hooks import HookEvent, HookResult
from actionguard.types.mcp import ToolResult
from actionguard.types.patch import DryRunResult, SanitizedDiff, UnifiedDiff
from actionguard.types.permissions import (
    ACTION_SEVERITY,
    PermissionAction,
    PermissionQuery,
)

logger = logging.getLogger(__name__)

PATCH_TOOL = "fs_patch"


class ActionMediator:
    """Policy-gated patches and tool calls for one project root."""

    def __init__(
        self,
        root: str | Path,
        *,
        config: LayeredConfig | None = None,
        confirmation: ConfirmationChannel | None = None,
        retry: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config or LayeredConfig(self.root)
        self.policy = PolicyEngine(config=self.config)
        self.hooks = HookRunner(self.root, config=self.config)
        self.journal = JournalStore(self.root)
        self.applier = PatchApplier(self.root, journal=self.journal, hooks=self.hooks)
        self.bridge = ToolDispatchBridge(
            self.policy,
            ServerRegistry(self.root),
            confirmation=confirmation,
            retry=retry,
            http_client=http_client,
        )
        self._confirmation = confirmation

    # -- permissions ----------------------------------------------------------

    def check_permission(
        self, tool: str, *, path: str | None = None, command: str | None = None,
    ) -> PermissionAction:
        return self.policy.check(PermissionQuery(tool=tool, path=path, command=command))

    def patch_decision(self, diff: UnifiedDiff) -> PermissionAction:
        """Most restrictive decision over every file the diff touches.

        High-severity review findings turn ``allow`` into ``confirm``.
        """
        queries = [
            PermissionQuery(tool=PATCH_TOOL, path=path)
            for change in diff_files(diff)
            for path in change.paths
        ] or [PermissionQuery(tool=PATCH_TOOL)]
        decision = max(
            (self.policy.check(query) for query in queries),
            key=ACTION_SEVERITY.__getitem__,
        )
        if decision is PermissionAction.ALLOW and has_high_severity(review_patch(diff)):
            logger.info("High-severity findings in patch, asking for confirmation")
            decision = PermissionAction.CONFIRM
        return decision

    async def _gate_patch(self, diff: UnifiedDiff) -> None:
        decision = self.patch_decision(diff)
        if decision is PermissionAction.ALLOW:
            return
        if decision is PermissionAction.DENY:
            raise PermissionDenied(PATCH_TOOL)
        if self._confirmation is None:
            raise PermissionConfirmRequired(PATCH_TOOL)
        paths = ", ".join(p for c in diff_files(diff) for p in c.paths) or "(no files)"
        findings = "; ".join(f.message for f in review_patch(diff))
        args: dict[str, Any] = {"path": paths}
        description = describe_action(PATCH_TOOL, args)
        if findings:
            description = f"{description} [{findings}]"
        if not await self._confirmation.request_approval(PATCH_TOOL, args, description):
            raise PermissionDenied(PATCH_TOOL, "declined by user")

    # -- patches --------------------------------------------------------------

    async def dry_run_apply(
        self, diff: UnifiedDiff, *, timeout: float | None = None,
    ) -> DryRunResult:
        return await self.applier.dry_run_apply(diff, timeout=timeout)

    async def apply_patch(
        self, diff: UnifiedDiff, *, timeout: float | None = None,
    ) -> SanitizedDiff:
        """Gate on policy, then check and apply under the applier's lock.

        Raises PermissionDenied, PermissionConfirmRequired or ConflictError.
        """
        await self._gate_patch(diff)
        return await self.applier.apply(diff, timeout=timeout)

    async def revert(self, diff: UnifiedDiff, *, timeout: float | None = None) -> SanitizedDiff:
        return await self.applier.revert(diff, timeout=timeout)

    async def revert_last(self, *, timeout: float | None = None) -> bool:
        return await self.applier.revert_last(timeout=timeout)

    # -- tools ------------------------------------------------------------------

    async def call_tool(
        self,
        server_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        return await self.bridge.call_tool(server_id, tool_name, tool_input, timeout=timeout)

    async def handle_tool_payload(
        self, text: str, *, timeout: float | None = None,
    ) -> list[ToolResult]:
        """Run every ``tool_call`` block found in assistant text, in order."""
        return [
            await self.bridge.call_request(request, timeout=timeout)
            for request in parse_tool_calls(text)
        ]

    # -- hooks ------------------------------------------------------------------

    async def run_hooks(self, event: HookEvent, *, timeout: float | None = None) -> list[HookResult]:
        return await self.hooks.run_hooks(event, timeout=timeout)

    # -- lifecycle --------------------------------------------------------------

    async def close(self) -> None:
        await self.bridge.close()

    async def __aenter__(self) -> ActionMediator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
