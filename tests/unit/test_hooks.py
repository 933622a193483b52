"""Tests for actionguard.hooks — config parsing and sequential execution."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from actionguard.core.config import LayeredConfig, project_config_path
from actionguard.errors import HookError, OperationTimeout
from actionguard.hooks.runner import HookRunner
from actionguard.types.hooks import HookCommand, HookEvent


def write_hooks(root: Path, hooks: dict) -> None:
    path = project_config_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump({"hooks": hooks}, sort_keys=False))


class TestHookConfig:
    def test_events_and_timeouts(self, tmp_path: Path):
        write_hooks(tmp_path, {
            "pre-apply": [{"run": "make lint", "timeout_ms": 1500, "required": True}],
            "post-response": [{"run": "echo done"}],
        })
        hooks = LayeredConfig(tmp_path).hooks()
        assert hooks == [
            HookCommand(HookEvent.PRE_APPLY, "make lint", timeout=1.5, required=True),
            HookCommand(HookEvent.POST_RESPONSE, "echo done", timeout=30.0),
        ]

    def test_legacy_on_apply_routed_by_when(self, tmp_path: Path):
        write_hooks(tmp_path, {"on-apply": [
            {"run": "echo before"},
            {"run": "echo after", "when": "after"},
        ]})
        events = [h.event for h in LayeredConfig(tmp_path).hooks()]
        assert events == [HookEvent.PRE_APPLY, HookEvent.POST_APPLY]

    def test_bad_entries_skipped(self, tmp_path: Path):
        write_hooks(tmp_path, {
            "pre-apply": [{"timeout_ms": 10}, "echo", {"run": "true"}],
            "mid-flight": [{"run": "true"}],
        })
        assert [h.run for h in LayeredConfig(tmp_path).hooks()] == ["true"]

    def test_invalid_timeouts_skipped(self, tmp_path: Path):
        write_hooks(tmp_path, {
            "pre-apply": [
                {"run": "echo fast", "timeout_ms": "fast"},
                {"run": "echo negative", "timeout_ms": -5},
                {"run": "echo zero", "timeout_ms": 0},
                {"run": "echo flag", "timeout_ms": True},
                {"run": "echo ok", "timeout_ms": "250"},
            ],
            "post-apply": "echo not-a-list",
        })
        hooks = LayeredConfig(tmp_path).hooks()
        assert [(h.run, h.timeout) for h in hooks] == [("echo ok", 0.25)]

    def test_invalid_timeout_does_not_break_runner(self, tmp_path: Path):
        write_hooks(tmp_path, {"pre-apply": [{"run": "echo hi", "timeout_ms": "fast"}]})
        assert HookRunner(tmp_path).hooks_for(HookEvent.PRE_APPLY) == []

    def test_runner_loads_from_config(self, tmp_path: Path):
        write_hooks(tmp_path, {"pre-prompt": [{"run": "echo hi"}]})
        runner = HookRunner(tmp_path)
        assert [h.run for h in runner.hooks_for(HookEvent.PRE_PROMPT)] == ["echo hi"]
        assert runner.hooks_for(HookEvent.POST_APPLY) == []


class TestHookRunner:
    @pytest.mark.asyncio
    async def test_runs_in_order(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [
            HookCommand(HookEvent.PRE_APPLY, "echo first"),
            HookCommand(HookEvent.POST_APPLY, "echo elsewhere"),
            HookCommand(HookEvent.PRE_APPLY, "echo second"),
        ])
        results = await runner.run_hooks(HookEvent.PRE_APPLY)
        assert [r.output for r in results] == ["first", "second"]
        assert all(r.success and r.exit_code == 0 for r in results)

    @pytest.mark.asyncio
    async def test_runs_in_project_root(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [HookCommand(HookEvent.PRE_PROMPT, "pwd")])
        (result,) = await runner.run_hooks(HookEvent.PRE_PROMPT)
        assert Path(result.output).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_optional_failure_continues(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [
            HookCommand(HookEvent.PRE_APPLY, "false"),
            HookCommand(HookEvent.PRE_APPLY, "echo still here"),
        ])
        results = await runner.run_hooks(HookEvent.PRE_APPLY)
        assert [r.success for r in results] == [False, True]
        assert results[0].exit_code == 1

    @pytest.mark.asyncio
    async def test_required_failure_stops(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [
            HookCommand(HookEvent.PRE_APPLY, "false", required=True),
            HookCommand(HookEvent.PRE_APPLY, "touch marker"),
        ])
        with pytest.raises(HookError) as exc_info:
            await runner.run_hooks(HookEvent.PRE_APPLY)
        assert exc_info.value.result.exit_code == 1
        assert not (tmp_path / "marker").exists()

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [HookCommand(HookEvent.PRE_APPLY, "no-such-binary-xyz")])
        (result,) = await runner.run_hooks(HookEvent.PRE_APPLY)
        assert not result.success
        assert "failed to start" in result.error

    @pytest.mark.asyncio
    async def test_per_hook_timeout(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [HookCommand(HookEvent.PRE_APPLY, "sleep 5", timeout=0.2)])
        (result,) = await runner.run_hooks(HookEvent.PRE_APPLY)
        assert result.timed_out
        assert not result.success

    @pytest.mark.asyncio
    async def test_overall_deadline(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [HookCommand(HookEvent.PRE_APPLY, "sleep 5")])
        with pytest.raises(OperationTimeout):
            await runner.run_hooks(HookEvent.PRE_APPLY, timeout=0.2)

    @pytest.mark.asyncio
    async def test_no_hooks(self, tmp_path: Path):
        assert await HookRunner(tmp_path, []).run_hooks(HookEvent.POST_RESPONSE) == []

    def test_register(self, tmp_path: Path):
        runner = HookRunner(tmp_path, [])
        runner.register(HookCommand(HookEvent.PRE_PROMPT, "true"))
        assert len(runner.hooks) == 1
