"""Test fixtures: isolated config, scratch git repos and a scripted stdio tool server."""

from __future__ import annotations

import json
import shutil
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from actionguard.types.mcp import McpServerConfig, TransportKind

ECHO_SERVER = textwrap.dedent('''
    import json
    import os
    import time

    import anyio
    import mcp.types as types
    from mcp.server.lowlevel import Server
    from mcp.server.stdio import stdio_server

    server = Server("echo")
    SCHEMA = {"type": "object"}

    @server.list_tools()
    async def list_tools():
        return [
            types.Tool(name="echo", description="Echo the input back", inputSchema=SCHEMA),
            types.Tool(name="sleep", description="Sleep for a while", inputSchema=SCHEMA),
            types.Tool(name="fail", description="Always reports an error", inputSchema=SCHEMA),
            types.Tool(name="pid", description="Report the server pid", inputSchema=SCHEMA),
        ]

    @server.call_tool()
    async def call_tool(name, arguments):
        if name == "echo":
            text = json.dumps(arguments)
        elif name == "sleep":
            start = time.time()
            await anyio.sleep(float(arguments.get("seconds", 30)))
            text = json.dumps({"start": start, "end": time.time()})
        elif name == "fail":
            raise RuntimeError("boom")
        elif name == "pid":
            text = str(os.getpid())
        else:
            raise ValueError("Unknown tool " + str(name))
        return [types.TextContent(type="text", text=text)]

    async def main():
        async with stdio_server() as (read, write):
            await server.run(read, write, server.create_initialization_options())

    anyio.run(main)
''')


def git(root: Path, *args: str) -> str:
    """Run git synchronously in *root* and return stdout."""
    proc = subprocess.run(
        ["git", *args], cwd=root, check=True, capture_output=True, text=True,
    )
    return proc.stdout


def make_diff(path: str, old: list[str], new: list[str]) -> str:
    """A single-hunk unified diff replacing *old* lines of *path* with *new*."""
    lines = [
        f"--- a/{path}",
        f"+++ b/{path}",
        f"@@ -1,{len(old)} +1,{len(new)} @@",
        *(f"-{line}" for line in old),
        *(f"+{line}" for line in new),
    ]
    return "\n".join(lines) + "\n"


def tool_text(result: dict) -> str:
    """Text of the first content block of a ``tools/call`` result."""
    return result["content"][0]["text"]


def tool_json(result: dict):
    return json.loads(tool_text(result))


def new_file_diff(path: str, content: list[str]) -> str:
    lines = [
        "--- /dev/null",
        f"+++ b/{path}",
        f"@@ -0,0 +1,{len(content)} @@",
        *(f"+{line}" for line in content),
    ]
    return "\n".join(lines) + "\n"


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config at an empty per-test directory."""
    home = tmp_path_factory.mktemp("config-home")
    monkeypatch.setenv("ACTIONGUARD_CONFIG_HOME", str(home))
    return home


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A fresh git work tree with one committed file, ``hello.txt``."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test")
    (repo / "hello.txt").write_text("hello\nworld\n")
    git(repo, "add", "hello.txt")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def echo_server_script(tmp_path: Path) -> Path:
    script = tmp_path / "echo_server.py"
    script.write_text(ECHO_SERVER)
    return script


@pytest.fixture
def echo_server(echo_server_script: Path) -> McpServerConfig:
    """Config for a persistent stdio MCP server."""
    return McpServerConfig(
        id="echo",
        transport=TransportKind.STDIO,
        command=sys.executable,
        args=("-u", str(echo_server_script)),
    )
