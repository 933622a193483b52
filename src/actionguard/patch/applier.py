"""PatchApplier: dry-run / apply / revert / undo-last over a git work tree."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from actionguard.core.config import project_dir
from actionguard.errors import ConflictError, OperationTimeout, ValidationError
from actionguard.patch.git import Git
from actionguard.patch.journal import JournalStore
from actionguard.patch.sanitize import sanitize
from actionguard.runtime.command import CommandResult
from actionguard.types.hooks import HookEvent
from actionguard.types.journal import JournalAction
from actionguard.types.patch import DryRunResult, SanitizedDiff, UnifiedDiff

if TYPE_CHECKING:
    from actionguard.hooks.runner import HookRunner

logger = logging.getLogger(__name__)

TMP_DIR = "tmp"


def _conflict_lines(result: CommandResult, action: str) -> list[str]:
    lines = [line for line in result.output.split("\n") if line.strip()]
    return lines or [f"git apply {action} failed with exit code {result.exit_code}"]


def _sanitized(diff: UnifiedDiff) -> SanitizedDiff:
    clean = sanitize(diff)
    if not clean:
        raise ValidationError("Diff is empty after sanitizing")
    return clean


class PatchApplier:
    """Applies sanitized diffs to one working tree and journals every change.

    All operations on an applier are serialized by a single lock, so share
    one instance per repository.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        journal: JournalStore | None = None,
        git: Git | None = None,
        hooks: HookRunner | None = None,
    ) -> None:
        self._root = Path(root).resolve()
        self._journal = journal or JournalStore(self._root)
        self._git = git or Git(self._root)
        self._hooks = hooks
        self._lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def journal(self) -> JournalStore:
        return self._journal

    @property
    def tmp_dir(self) -> Path:
        return project_dir(self._root) / TMP_DIR

    # -- scoping helpers ------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _operation(self, name: str, timeout: float | None) -> AsyncIterator[None]:
        """Hold the lock and enforce the deadline for one operation."""
        try:
            async with asyncio.timeout(timeout):
                async with self._lock:
                    await self._git.ensure_repo()
                    yield
        except TimeoutError as exc:
            if isinstance(exc, OperationTimeout):
                raise
            raise OperationTimeout(f"{name} timed out after {timeout}s") from exc

    @contextlib.contextmanager
    def _temp_patch(self, diff: SanitizedDiff) -> Iterator[Path]:
        """Write *diff* to a temp file that is removed on every exit path."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.tmp_dir,
            prefix="patch-", suffix=".patch", delete=False,
        ) as handle:
            path = Path(handle.name)
        try:
            # git wants a trailing newline after the last hunk line
            path.write_text(diff + "\n", encoding="utf-8")
            yield path
        finally:
            path.unlink(missing_ok=True)

    # -- operations ---------------------------------------------------------

    async def dry_run_apply(
        self, diff: UnifiedDiff, *, timeout: float | None = None,
    ) -> DryRunResult:
        """Check whether *diff* applies cleanly without touching the tree."""
        clean = _sanitized(diff)
        async with self._operation("dry-run", timeout):
            with self._temp_patch(clean) as patch_file:
                result = await self._git.check_apply(patch_file)
        if result.ok:
            return DryRunResult(ok=True)
        return DryRunResult(ok=False, conflicts=_conflict_lines(result, "--check"))

    async def apply(self, diff: UnifiedDiff, *, timeout: float | None = None) -> SanitizedDiff:
        """Check, apply (all files or none) and journal *diff*.

        Returns the sanitized diff. Raises ConflictError when the check fails.
        """
        clean = _sanitized(diff)
        async with self._operation("apply", timeout):
            if self._hooks is not None:
                await self._hooks.run_hooks(HookEvent.PRE_APPLY)
            with self._temp_patch(clean) as patch_file:
                check = await self._git.check_apply(patch_file)
                if not check.ok:
                    raise ConflictError(
                        "Patch does not apply", _conflict_lines(check, "--check"),
                    )
                result = await self._git.apply(patch_file)
            if not result.ok:
                raise ConflictError("Patch does not apply", _conflict_lines(result, "apply"))
            self._journal.append(JournalAction.APPLY, clean)
            logger.info("Applied patch in %s", self._root)
            if self._hooks is not None:
                await self._hooks.run_hooks(HookEvent.POST_APPLY)
        return clean

    async def revert(self, diff: UnifiedDiff, *, timeout: float | None = None) -> SanitizedDiff:
        """Reverse-apply *diff* and journal the revert."""
        clean = _sanitized(diff)
        async with self._operation("revert", timeout):
            await self._revert_locked(clean)
        return clean

    async def revert_last(self, *, timeout: float | None = None) -> bool:
        """Undo the newest apply that has not been reverted yet.

        Returns False, without side effects, when there is nothing to undo.
        """
        async with self._operation("revert-last", timeout):
            entry = self._journal.last_unpaired_apply()
            if entry is None:
                return False
            await self._revert_locked(SanitizedDiff(entry.diff))
        return True

    async def _revert_locked(self, clean: SanitizedDiff) -> None:
        with self._temp_patch(clean) as patch_file:
            result = await self._git.reverse_apply(patch_file)
        if not result.ok:
            raise ConflictError("Patch cannot be reverted", _conflict_lines(result, "-R"))
        self._journal.append(JournalAction.REVERT, clean)
        logger.info("Reverted patch in %s", self._root)
