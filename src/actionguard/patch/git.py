"""git as the version-control collaborator: check-apply, apply, reverse-apply."""

from __future__ import annotations

from pathlib import Path

from actionguard.errors import NotAVersionControlRepo
from actionguard.runtime.command import CommandResult, run_command

# --recount tolerates hunk headers whose line counts the model got wrong
_APPLY_FLAGS = ("--recount", "--whitespace=nowarn")


class Git:
    """Thin async wrapper over the ``git`` CLI for one working tree."""

    def __init__(self, root: str | Path, *, executable: str = "git") -> None:
        self._root = Path(root)
        self._exe = executable

    @property
    def root(self) -> Path:
        return self._root

    async def _run(self, *args: str, timeout: float | None = None) -> CommandResult:
        return await run_command([self._exe, *args], cwd=self._root, timeout=timeout)

    async def ensure_repo(self, *, timeout: float | None = None) -> None:
        """Raise :class:`NotAVersionControlRepo` unless root is in a work tree."""
        if not self._root.is_dir():
            raise NotAVersionControlRepo(str(self._root), "directory does not exist")
        try:
            result = await self._run("rev-parse", "--is-inside-work-tree", timeout=timeout)
        except FileNotFoundError as exc:
            raise NotAVersionControlRepo(str(self._root), "git is not installed") from exc
        if not result.ok or result.stdout.strip() != "true":
            raise NotAVersionControlRepo(str(self._root))

    async def check_apply(self, patch_file: Path, *, timeout: float | None = None) -> CommandResult:
        return await self._run("apply", "--check", *_APPLY_FLAGS, str(patch_file), timeout=timeout)

    async def apply(self, patch_file: Path, *, timeout: float | None = None) -> CommandResult:
        return await self._run("apply", *_APPLY_FLAGS, str(patch_file), timeout=timeout)

    async def reverse_apply(self, patch_file: Path, *, timeout: float | None = None) -> CommandResult:
        return await self._run("apply", "-R", *_APPLY_FLAGS, str(patch_file), timeout=timeout)
