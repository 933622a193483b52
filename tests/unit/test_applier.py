"""Tests for PatchApplier against real git work trees."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from actionguard.errors import (
    ConflictError,
    HookError,
    NotAVersionControlRepo,
    OperationTimeout,
    ValidationError,
)
from actionguard.hooks.runner import HookRunner
from actionguard.patch.applier import PatchApplier
from actionguard.patch.git import Git
from actionguard.types.hooks import HookCommand, HookEvent
from actionguard.types.journal import JournalAction
from tests.conftest import make_diff, new_file_diff

CHANGE = make_diff("hello.txt", ["hello", "world"], ["hello", "there"])


def tmp_files(applier: PatchApplier) -> list[Path]:
    return list(applier.tmp_dir.iterdir()) if applier.tmp_dir.exists() else []


class TestDryRun:
    @pytest.mark.asyncio
    async def test_clean_diff(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        result = await applier.dry_run_apply(CHANGE)
        assert result.ok
        assert result.conflicts == []
        assert (git_repo / "hello.txt").read_text() == "hello\nworld\n"
        assert tmp_files(applier) == []

    @pytest.mark.asyncio
    async def test_missing_file(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        result = await applier.dry_run_apply(make_diff("missing.txt", ["a"], ["b"]))
        assert not result.ok
        assert result.conflicts
        assert tmp_files(applier) == []

    @pytest.mark.asyncio
    async def test_fenced_diff_is_sanitized(self, git_repo: Path):
        raw = "```diff\n*** Begin Patch\n" + CHANGE.replace("a/", "").replace("b/", "") + "*** End Patch\n```"
        result = await PatchApplier(git_repo).dry_run_apply(raw)
        assert result.ok

    @pytest.mark.asyncio
    async def test_empty_diff_rejected(self, git_repo: Path):
        with pytest.raises(ValidationError):
            await PatchApplier(git_repo).dry_run_apply("```\n```")


class TestApplyRevert:
    @pytest.mark.asyncio
    async def test_apply_then_revert_restores(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        await applier.apply(CHANGE)
        assert (git_repo / "hello.txt").read_text() == "hello\nthere\n"

        await applier.revert(CHANGE)
        assert (git_repo / "hello.txt").read_text() == "hello\nworld\n"
        actions = [e.action for e in applier.journal.entries()]
        assert actions == [JournalAction.APPLY, JournalAction.REVERT]
        assert tmp_files(applier) == []

    @pytest.mark.asyncio
    async def test_new_file(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        diff = new_file_diff("notes/todo.txt", ["one", "two"])
        await applier.apply(diff)
        assert (git_repo / "notes" / "todo.txt").read_text() == "one\ntwo\n"
        await applier.revert(diff)
        assert not (git_repo / "notes" / "todo.txt").exists()

    @pytest.mark.asyncio
    async def test_conflict_leaves_tree_and_journal_untouched(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        bad = make_diff("hello.txt", ["nope", "nothing"], ["x"])
        with pytest.raises(ConflictError) as exc_info:
            await applier.apply(bad)
        assert exc_info.value.conflicts
        assert (git_repo / "hello.txt").read_text() == "hello\nworld\n"
        assert applier.journal.entries() == []
        assert tmp_files(applier) == []

    @pytest.mark.asyncio
    async def test_multi_file_is_all_or_nothing(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        diff = new_file_diff("fresh.txt", ["new"]) + make_diff("hello.txt", ["nope"], ["x"])
        with pytest.raises(ConflictError):
            await applier.apply(diff)
        assert not (git_repo / "fresh.txt").exists()

    @pytest.mark.asyncio
    async def test_markdown_with_fenced_context(self, git_repo: Path):
        (git_repo / "README.md").write_text("```python\nx = 1\n```\n")
        diff = (
            "--- a/README.md\n+++ b/README.md\n@@ -1,3 +1,3 @@\n"
            " ```python\n-x = 1\n+x = 2\n ```\n"
        )
        applier = PatchApplier(git_repo)
        assert (await applier.dry_run_apply(diff)).ok
        await applier.apply(diff)
        assert (git_repo / "README.md").read_text() == "```python\nx = 2\n```\n"

    @pytest.mark.asyncio
    async def test_revert_unapplied_diff_conflicts(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        with pytest.raises(ConflictError):
            await applier.revert(CHANGE)
        assert applier.journal.entries() == []


class TestRevertLast:
    @pytest.mark.asyncio
    async def test_nothing_to_undo(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        assert await applier.revert_last() is False
        assert applier.journal.entries() == []

    @pytest.mark.asyncio
    async def test_undoes_newest_first(self, git_repo: Path):
        applier = PatchApplier(git_repo)
        first = new_file_diff("a.txt", ["a"])
        second = new_file_diff("b.txt", ["b"])
        third = new_file_diff("c.txt", ["c"])
        for diff in (first, second, third):
            await applier.apply(diff)

        assert await applier.revert_last() is True
        assert not (git_repo / "c.txt").exists()
        assert (git_repo / "b.txt").exists()

        assert await applier.revert_last() is True
        assert not (git_repo / "b.txt").exists()
        assert (git_repo / "a.txt").exists()

        assert await applier.revert_last() is True
        assert await applier.revert_last() is False
        reverts = [e for e in applier.journal.entries() if e.action is JournalAction.REVERT]
        assert len(reverts) == 3


class TracingGit(Git):
    """Git that notes whether two invocations were ever in flight at once."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.active = 0
        self.overlapped = False

    async def _run(self, *args: str, timeout: float | None = None):
        self.active += 1
        self.overlapped = self.overlapped or self.active > 1
        try:
            await asyncio.sleep(0.01)
            return await super()._run(*args, timeout=timeout)
        finally:
            self.active -= 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_operations_are_serialized(self, git_repo: Path):
        git = TracingGit(git_repo)
        applier = PatchApplier(git_repo, git=git)
        diffs = [new_file_diff(f"f{i}.txt", [str(i)]) for i in range(5)]

        results = await asyncio.gather(
            *(applier.apply(diff) for diff in diffs),
            applier.dry_run_apply(CHANGE),
            applier.dry_run_apply(CHANGE),
        )

        assert not git.overlapped
        assert all(result.ok for result in results[5:])
        entries = applier.journal.entries()
        assert [e.action for e in entries] == [JournalAction.APPLY] * 5
        assert sorted(e.diff for e in entries) == sorted(results[:5])
        stamps = [e.at for e in entries]
        assert stamps == sorted(stamps)
        assert all((git_repo / f"f{i}.txt").exists() for i in range(5))
        assert tmp_files(applier) == []


class TestRepositoryChecks:
    @pytest.mark.asyncio
    async def test_not_a_repo(self, tmp_path: Path, git_repo: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(NotAVersionControlRepo, match="git init"):
            await PatchApplier(plain).dry_run_apply(CHANGE)

    @pytest.mark.asyncio
    async def test_git_missing(self, git_repo: Path):
        applier = PatchApplier(git_repo, git=Git(git_repo, executable="definitely-not-git-xyz"))
        with pytest.raises(NotAVersionControlRepo, match="not installed"):
            await applier.dry_run_apply(CHANGE)


class TestHooksAndDeadlines:
    @pytest.mark.asyncio
    async def test_required_pre_apply_hook_blocks(self, git_repo: Path):
        hooks = HookRunner(git_repo, [HookCommand(HookEvent.PRE_APPLY, "false", required=True)])
        applier = PatchApplier(git_repo, hooks=hooks)
        with pytest.raises(HookError):
            await applier.apply(CHANGE)
        assert (git_repo / "hello.txt").read_text() == "hello\nworld\n"

    @pytest.mark.asyncio
    async def test_post_apply_hook_runs_after_change(self, git_repo: Path):
        hooks = HookRunner(git_repo, [HookCommand(HookEvent.POST_APPLY, "cp hello.txt copy.txt")])
        await PatchApplier(git_repo, hooks=hooks).apply(CHANGE)
        assert (git_repo / "copy.txt").read_text() == "hello\nthere\n"

    @pytest.mark.asyncio
    async def test_timeout_releases_lock_and_temp_files(self, git_repo: Path):
        hooks = HookRunner(git_repo, [HookCommand(HookEvent.PRE_APPLY, "sleep 5")])
        applier = PatchApplier(git_repo, hooks=hooks)
        with pytest.raises(OperationTimeout):
            await applier.apply(CHANGE, timeout=0.5)
        assert isinstance(OperationTimeout("x"), TimeoutError)
        assert tmp_files(applier) == []
        # Lock was released: a follow-up dry run completes
        result = await asyncio.wait_for(applier.dry_run_apply(CHANGE), timeout=10)
        assert result.ok
