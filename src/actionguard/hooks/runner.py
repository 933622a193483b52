"""Hook execution around mediated actions."""

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path

from actionguard.core.config import LayeredConfig
from actionguard.errors import HookError, OperationTimeout
from actionguard.runtime.command import run_command
from actionguard.types.hooks import HookCommand, HookEvent, HookResult

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs configured commands for an event, in registration order."""

    def __init__(
        self,
        root: str | Path,
        hooks: list[HookCommand] | None = None,
        *,
        config: LayeredConfig | None = None,
    ) -> None:
        self._root = Path(root)
        if hooks is None:
            hooks = (config or LayeredConfig(self._root)).hooks()
        self._hooks: list[HookCommand] = list(hooks)

    @property
    def hooks(self) -> list[HookCommand]:
        return list(self._hooks)

    def register(self, hook: HookCommand) -> None:
        """Add a hook."""
        self._hooks.append(hook)

    def hooks_for(self, event: HookEvent) -> list[HookCommand]:
        return [h for h in self._hooks if h.event is event]

    async def run_hooks(
        self, event: HookEvent, *, timeout: float | None = None,
    ) -> list[HookResult]:
        """Run every hook for *event*.

        A failing required hook raises :class:`HookError` and stops the run;
        optional failures are logged and returned in the results.
        """
        results: list[HookResult] = []
        try:
            async with asyncio.timeout(timeout):
                for hook in self.hooks_for(event):
                    result = await self._execute(hook)
                    results.append(result)
                    if result.success:
                        continue
                    if hook.required:
                        raise HookError(
                            f"Required {event.value} hook failed: {hook.run}: {result.error}",
                            result=result,
                        )
                    logger.warning(
                        "Optional %s hook failed: %s: %s", event.value, hook.run, result.error,
                    )
        except TimeoutError as exc:
            if isinstance(exc, OperationTimeout):
                raise
            raise OperationTimeout(f"{event.value} hooks timed out after {timeout}s") from exc
        return results

    async def _execute(self, hook: HookCommand) -> HookResult:
        """Execute a single hook command under its own timeout."""
        try:
            argv = shlex.split(hook.run)
        except ValueError as exc:
            return HookResult(hook=hook, success=False, error=f"Cannot parse hook command: {exc}")
        if not argv:
            return HookResult(hook=hook, success=False, error="Empty hook command")

        try:
            result = await run_command(argv, cwd=self._root, timeout=hook.timeout)
        except TimeoutError:
            return HookResult(
                hook=hook,
                success=False,
                timed_out=True,
                error=f"Hook timed out after {hook.timeout}s: {hook.run}",
            )
        except OSError as exc:
            return HookResult(
                hook=hook,
                success=False,
                error=f"Hook failed to start: {type(exc).__name__}: {exc}",
            )

        return HookResult(
            hook=hook,
            success=result.ok,
            output=result.stdout,
            error=None if result.ok else (result.stderr or f"exit code {result.exit_code}"),
            exit_code=result.exit_code,
        )
