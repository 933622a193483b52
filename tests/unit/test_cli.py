"""Tests for the actionguard CLI."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import yaml
from click.testing import CliRunner

from actionguard.cli.main import cli
from actionguard.core.config import project_config_path
from tests.conftest import make_diff

CHANGE = make_diff("hello.txt", ["hello", "world"], ["hello", "there"])


def run(root: Path, *args: str, input: str | None = None):
    return CliRunner().invoke(cli, ["--cwd", str(root), *args], input=input)


class TestPermsCommands:
    def test_set_default_and_check(self, tmp_path: Path):
        result = run(tmp_path, "perms", "set-default", "exec", "confirm")
        assert result.exit_code == 0, result.output

        result = run(tmp_path, "perms", "check", "exec", "--command", "ls")
        assert result.exit_code == 0
        assert result.output.splitlines()[0] == "confirm"
        assert "via default" in result.output

    def test_add_list_remove(self, tmp_path: Path):
        result = run(tmp_path, "perms", "add-rule", "deny", "--tool", "exec", "--command", "rm.*")
        assert result.exit_code == 0, result.output
        assert "#0" in result.output

        result = run(tmp_path, "perms", "check", "exec", "--command", "rm -rf /")
        assert result.output.splitlines()[0] == "deny"
        assert "project#0" in result.output

        listing = run(tmp_path, "perms", "list")
        assert '"command": "rm.*"' in listing.output

        assert run(tmp_path, "perms", "remove-rule", "0").exit_code == 0
        saved = yaml.safe_load(project_config_path(tmp_path).read_text())
        assert saved["permissions"]["rules"] == []

    def test_remove_missing_rule(self, tmp_path: Path):
        result = run(tmp_path, "perms", "remove-rule", "4")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_bad_regex_rejected(self, tmp_path: Path):
        result = run(tmp_path, "perms", "add-rule", "deny", "--command", "(")
        assert result.exit_code == 1


class TestPatchCommands:
    def test_check_apply_undo(self, git_repo: Path):
        result = run(git_repo, "patch", "check", "-", input=CHANGE)
        assert result.exit_code == 0, result.output
        assert "applies cleanly" in result.output

        result = run(git_repo, "patch", "apply", "-", input=CHANGE)
        assert result.exit_code == 0, result.output
        assert (git_repo / "hello.txt").read_text() == "hello\nthere\n"

        result = run(git_repo, "patch", "undo")
        assert "Reverted" in result.output
        assert (git_repo / "hello.txt").read_text() == "hello\nworld\n"

        result = run(git_repo, "patch", "undo")
        assert "Nothing to undo" in result.output

    def test_check_reports_conflicts(self, git_repo: Path):
        result = run(git_repo, "patch", "check", "-", input=make_diff("missing.txt", ["a"], ["b"]))
        assert result.exit_code == 1
        assert "does not apply" in result.output

    def test_apply_from_file(self, git_repo: Path, tmp_path: Path):
        diff_file = tmp_path / "change.diff"
        diff_file.write_text(CHANGE)
        result = run(git_repo, "patch", "apply", str(diff_file))
        assert result.exit_code == 0, result.output

    def test_confirm_needs_yes_without_tty(self, git_repo: Path):
        run(git_repo, "perms", "set-default", "fs_patch", "confirm")
        result = run(git_repo, "patch", "apply", "-", input=CHANGE)
        assert result.exit_code == 1
        assert "requires confirmation" in result.output

        result = run(git_repo, "patch", "apply", "--yes", "-", input=CHANGE)
        assert result.exit_code == 0, result.output

    def test_not_a_repo(self, tmp_path: Path):
        result = run(tmp_path, "patch", "check", "-", input=CHANGE)
        assert result.exit_code == 1
        assert "git init" in result.output

    def test_review(self, tmp_path: Path):
        diff = make_diff("deploy.sh", ["echo hi"], ["rm -rf /tmp/build"])
        result = run(tmp_path, "patch", "review", "-", input=diff)
        assert "deploy.sh  +1 -1" in result.output
        assert "[high]" in result.output


class TestMcpCommands:
    def test_attach_call_detach(self, tmp_path: Path, echo_server_script: Path):
        result = run(
            tmp_path, "mcp", "attach", "echo",
            "--command", sys.executable, "--arg", "-u", "--arg", str(echo_server_script),
        )
        assert result.exit_code == 0, result.output
        assert "stdio" in result.output

        assert "echo" in run(tmp_path, "mcp", "list").output

        tools = run(tmp_path, "mcp", "tools", "echo", "--timeout", "10")
        assert "sleep" in tools.output

        result = run(tmp_path, "mcp", "call", "echo", "echo", '{"n": 1}', "--timeout", "10")
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert json.loads(payload["content"][0]["text"]) == {"n": 1}

        health = run(tmp_path, "mcp", "health", "--timeout", "10")
        assert "ok" in health.output

        assert run(tmp_path, "mcp", "detach", "echo").exit_code == 0
        assert "No MCP servers" in run(tmp_path, "mcp", "list").output

    def test_attach_invalid(self, tmp_path: Path):
        result = run(tmp_path, "mcp", "attach", "bad", "--transport", "sse")
        assert result.exit_code == 1

    def test_call_bad_json(self, tmp_path: Path):
        result = run(tmp_path, "mcp", "call", "s", "t", "{nope")
        assert result.exit_code == 2

    def test_call_unknown_server(self, tmp_path: Path):
        result = run(tmp_path, "mcp", "call", "ghost", "t")
        assert result.exit_code == 1
        assert "No MCP server" in result.output


class TestHooksCommands:
    def test_run_event(self, tmp_path: Path):
        path = project_config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text(yaml.safe_dump({"hooks": {"pre-prompt": [{"run": "echo hello hooks"}]}}))
        result = run(tmp_path, "hooks", "run", "pre-prompt")
        assert result.exit_code == 0, result.output
        assert "hello hooks" in result.output

    def test_no_hooks(self, tmp_path: Path):
        result = run(tmp_path, "hooks", "run", "post-apply")
        assert "No hooks" in result.output

    def test_unknown_event(self, tmp_path: Path):
        assert run(tmp_path, "hooks", "run", "whenever").exit_code == 2
