"""Scoped child processes with deadlines and guaranteed cleanup."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Grace period between terminate() and kill() when shutting a child down
_TERMINATE_GRACE = 1.0


@dataclass(slots=True)
class CommandResult:
    """Result from a finished command."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stderr then stdout, the way git reports failures."""
        return "\n".join(part for part in (self.stderr, self.stdout) if part)


class Command:
    """A child process owned by an ``async with`` block.

    The process is killed and reaped when the block exits, whatever the
    reason (normal exit, exception, timeout or cancellation).

        async with Command(["git", "status"], cwd=root) as cmd:
            result = await cmd.communicate(timeout=5)
    """

    def __init__(
        self,
        argv: list[str],
        *,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        stdin: bool = False,
        limit: int = 2**16,
        capture_stderr: bool = True,
    ) -> None:
        if not argv:
            raise ValueError("Command needs at least one argument")
        self.argv = list(argv)
        self._cwd = str(cwd) if cwd is not None else None
        self._env = {**os.environ, **env} if env else None
        self._want_stdin = stdin
        self._limit = limit  # max line length for readline() on stdout
        self._capture_stderr = capture_stderr
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def process(self) -> asyncio.subprocess.Process:
        if self._proc is None:
            raise RuntimeError("Command has not been started")
        return self._proc

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> Command:
        """Spawn the child. Raises ``OSError`` if it cannot be started."""
        self._proc = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE if self._want_stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE if self._capture_stderr else asyncio.subprocess.DEVNULL,
            cwd=self._cwd,
            env=self._env,
            limit=self._limit,
        )
        logger.debug("Started %s (pid %s)", self.argv[0], self._proc.pid)
        return self

    async def communicate(
        self, data: bytes | None = None, *, timeout: float | None = None,
    ) -> CommandResult:
        """Wait for exit, collecting output. Kills the child on timeout."""
        proc = self.process
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(data), timeout=timeout)
        except (TimeoutError, asyncio.CancelledError):
            await self.close()
            raise
        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace").strip() if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace").strip() if stderr else "",
            exit_code=proc.returncode if proc.returncode is not None else -1,
        )

    async def close(self) -> None:
        """Terminate the child if still running and reap it."""
        proc = self._proc
        if proc is None:
            return
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(asyncio.shield(proc.wait()), timeout=_TERMINATE_GRACE)
            except (TimeoutError, asyncio.CancelledError):
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            logger.debug("Stopped %s (pid %s)", self.argv[0], proc.pid)
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

    async def __aenter__(self) -> Command:
        if self._proc is None:
            await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


async def run_command(
    argv: list[str],
    *,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    input: bytes | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command to completion inside a scoped :class:`Command`."""
    async with Command(argv, cwd=cwd, env=env, stdin=input is not None) as cmd:
        return await cmd.communicate(input, timeout=timeout)
