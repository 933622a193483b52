"""CLI entry point for actionguard."""

from __future__ import annotations

import logging
from pathlib import Path

import click


@click.group()
@click.option("--cwd", default=None, help="Project root (default: current directory)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx: click.Context, cwd: str | None, verbose: bool) -> None:
    """actionguard -- policy-gated patches and tool calls.

    \b
    Usage:
      actionguard patch check change.diff
      git diff | actionguard patch apply -
      actionguard patch undo
      actionguard perms check exec --command "rm -rf /"
      actionguard mcp attach files --command ./server.py
      actionguard mcp call files read_file '{"path": "README.md"}'
    """
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )
    ctx.ensure_object(dict)
    ctx.obj["root"] = Path(cwd or ".").resolve()


def _register_subcommands() -> None:
    """Register CLI subcommands."""
    from actionguard.cli.commands import hooks_cmd, mcp_cmd, patch_cmd, perms_cmd

    cli.add_command(patch_cmd, "patch")
    cli.add_command(perms_cmd, "perms")
    cli.add_command(mcp_cmd, "mcp")
    cli.add_command(hooks_cmd, "hooks")


_register_subcommands()


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
