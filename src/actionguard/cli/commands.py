"""CLI subcommands for actionguard (patch, perms, mcp, hooks)."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import click

from actionguard.errors import ConflictError, MediationError, ToolExecutionError
from actionguard.mediator import ActionMediator
from actionguard.permissions.approval import (
    ConfirmationChannel,
    RichConfirmation,
    StaticConfirmation,
)
from actionguard.types.hooks import HookEvent
from actionguard.types.permissions import PermissionAction, PermissionQuery

T = TypeVar("T")


@contextmanager
def _errors() -> Iterator[None]:
    """Turn mediation errors into a clean CLI failure."""
    try:
        yield
    except ConflictError as exc:
        for line in exc.conflicts:
            click.echo(f"  {line}", err=True)
        raise click.ClickException(str(exc)) from exc
    except ToolExecutionError as exc:
        click.echo(json.dumps(exc.diagnostics, indent=2, default=str), err=True)
        raise click.ClickException(str(exc)) from exc
    except MediationError as exc:
        raise click.ClickException(str(exc)) from exc


def _root(ctx: click.Context) -> Path:
    ctx.ensure_object(dict)
    return ctx.obj.get("root") or Path.cwd()


def _confirmation(yes: bool) -> ConfirmationChannel | None:
    if yes:
        return StaticConfirmation(True)
    if sys.stdin.isatty():
        return RichConfirmation()
    return None


def _mediate(
    ctx: click.Context,
    fn: Callable[[ActionMediator], Awaitable[T]],
    *,
    yes: bool = False,
) -> T:
    """Run *fn* against a mediator for the current root, then close it."""

    async def _run() -> T:
        async with ActionMediator(_root(ctx), confirmation=_confirmation(yes)) as mediator:
            return await fn(mediator)

    with _errors():
        return asyncio.run(_run())


# --- patch subcommands ---


@click.group()
def patch_cmd() -> None:
    """Check, apply and undo unified diffs."""


@patch_cmd.command("check")
@click.argument("diff_file", type=click.File("r"), default="-")
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def patch_check(ctx: click.Context, diff_file: Any, timeout: float | None) -> None:
    """Dry-run a diff without touching the working tree."""
    diff = diff_file.read()
    result = _mediate(ctx, lambda m: m.dry_run_apply(diff, timeout=timeout))
    if result.ok:
        click.echo("Patch applies cleanly.")
        return
    click.echo("Patch does not apply:", err=True)
    for line in result.conflicts:
        click.echo(f"  {line}", err=True)
    sys.exit(1)


@patch_cmd.command("apply")
@click.argument("diff_file", type=click.File("r"), default="-")
@click.option("--yes", "-y", is_flag=True, help="Approve confirmations without prompting")
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def patch_apply(ctx: click.Context, diff_file: Any, yes: bool, timeout: float | None) -> None:
    """Apply a diff and record it in the undo journal."""
    diff = diff_file.read()
    _mediate(ctx, lambda m: m.apply_patch(diff, timeout=timeout), yes=yes)
    click.echo("Patch applied.")


@patch_cmd.command("revert")
@click.argument("diff_file", type=click.File("r"), default="-")
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def patch_revert(ctx: click.Context, diff_file: Any, timeout: float | None) -> None:
    """Reverse-apply a diff."""
    diff = diff_file.read()
    _mediate(ctx, lambda m: m.revert(diff, timeout=timeout))
    click.echo("Patch reverted.")


@patch_cmd.command("undo")
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def patch_undo(ctx: click.Context, timeout: float | None) -> None:
    """Undo the most recent apply that has not been reverted."""
    if _mediate(ctx, lambda m: m.revert_last(timeout=timeout)):
        click.echo("Reverted last patch.")
    else:
        click.echo("Nothing to undo.")


@patch_cmd.command("review")
@click.argument("diff_file", type=click.File("r"), default="-")
def patch_review(diff_file: Any) -> None:
    """Summarize a diff and list security findings."""
    from actionguard.patch.inspect import diff_files, review_patch

    diff = diff_file.read()
    for change in diff_files(diff):
        marker = " (new)" if change.new_file else " (deleted)" if change.deleted else ""
        click.echo(f"{' -> '.join(change.paths)}{marker}  +{change.added} -{change.removed}")
    findings = review_patch(diff)
    if not findings:
        click.echo("No findings.")
    for finding in findings:
        click.echo(f"[{finding.severity.value}] {finding.message}")


# --- perms subcommands ---


@click.group()
def perms_cmd() -> None:
    """Inspect and edit permission rules."""


def _engine(ctx: click.Context) -> Any:
    from actionguard.permissions.engine import PolicyEngine

    with _errors():
        return PolicyEngine(_root(ctx))


@perms_cmd.command("check")
@click.argument("tool")
@click.option("--path", default=None, help="Path the tool would touch")
@click.option("--command", "command", default=None, help="Command the tool would run")
@click.pass_context
def perms_check(ctx: click.Context, tool: str, path: str | None, command: str | None) -> None:
    """Show the decision for a tool invocation and what produced it."""
    decision = _engine(ctx).explain(PermissionQuery(tool=tool, path=path, command=command))
    click.echo(decision.action.value)
    if decision.rule is not None:
        rule = decision.rule
        click.echo(
            f"  rule {rule.scope.value}#{rule.index}: {json.dumps(rule.match.to_dict())}"
        )
    else:
        click.echo(f"  via {decision.source}")


@perms_cmd.command("list")
@click.pass_context
def perms_list(ctx: click.Context) -> None:
    """List merged defaults and rules in evaluation order."""
    engine = _engine(ctx)
    perms = engine.permission_set

    click.echo("Defaults:")
    if perms.defaults:
        for tool, action in sorted(perms.defaults.items()):
            click.echo(f"  {tool:<20} {action.value}")
    else:
        click.echo("  (none)")

    click.echo("\nRules:")
    if not perms.rules:
        click.echo("  (none)")
    for rule in perms.rules:
        click.echo(
            f"  {rule.scope.value:<8} #{rule.index:<3} {rule.action.value:<8} "
            f"{json.dumps(rule.match.to_dict())}"
        )

    for rule, reason in engine.defects:
        click.echo(f"\nDefective rule {rule.scope.value}#{rule.index}: {reason}", err=True)


@perms_cmd.command("set-default")
@click.argument("tool")
@click.argument("action", type=click.Choice([a.value for a in PermissionAction]))
@click.pass_context
def perms_set_default(ctx: click.Context, tool: str, action: str) -> None:
    """Set the project default action for a tool."""
    engine = _engine(ctx)
    with _errors():
        engine.set_default(tool, action)
    click.echo(f"Default for {tool}: {action}")


@perms_cmd.command("add-rule")
@click.argument("action", type=click.Choice([a.value for a in PermissionAction]))
@click.option("--tool", default=None, help="Tool name to match")
@click.option("--path", default=None, help="Path glob to match")
@click.option("--command", "command", default=None, help="Command regex to match")
@click.pass_context
def perms_add_rule(
    ctx: click.Context, action: str, tool: str | None, path: str | None, command: str | None,
) -> None:
    """Append a project rule."""
    match = {k: v for k, v in (("tool", tool), ("path", path), ("command", command)) if v}
    engine = _engine(ctx)
    with _errors():
        rule = engine.add_rule({"match": match, "action": action})
    click.echo(f"Added project rule #{rule.index}: {json.dumps(match)} -> {action}")


@perms_cmd.command("remove-rule")
@click.argument("index", type=int)
@click.pass_context
def perms_remove_rule(ctx: click.Context, index: int) -> None:
    """Remove the project rule at INDEX."""
    engine = _engine(ctx)
    with _errors():
        engine.remove_rule(index)
    click.echo(f"Removed project rule #{index}")


# --- mcp subcommands ---


@click.group()
def mcp_cmd() -> None:
    """Manage tool servers and call their tools."""


def _pairs(values: tuple[str, ...], what: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=what)
        out[key] = value
    return out


@mcp_cmd.command("attach")
@click.argument("server_id")
@click.option("--url", default=None, help="HTTP or SSE endpoint")
@click.option("--command", "command", default=None, help="Executable for a stdio server")
@click.option("--arg", "args", multiple=True, help="Argument for the stdio command")
@click.option(
    "--transport", type=click.Choice(["stdio", "http", "sse"]), default=None,
    help="Transport (default: stdio with --command, else http)",
)
@click.option("--header", "headers", multiple=True, help="HTTP header KEY=VALUE")
@click.option("--env", "env", multiple=True, help="Environment KEY=VALUE for stdio")
@click.option("--timeout", type=float, default=None, help="Default call deadline in seconds")
@click.option("--per-call", is_flag=True, help="Start a fresh stdio process for every call")
@click.pass_context
def mcp_attach(
    ctx: click.Context,
    server_id: str,
    url: str | None,
    command: str | None,
    args: tuple[str, ...],
    transport: str | None,
    headers: tuple[str, ...],
    env: tuple[str, ...],
    timeout: float | None,
    per_call: bool,
) -> None:
    """Register a tool server for this project."""
    from actionguard.mcp.registry import ServerRegistry, server_from_dict

    data: dict[str, Any] = {
        "id": server_id,
        "transport": transport,
        "url": url,
        "command": command,
        "args": list(args),
        "headers": _pairs(headers, "--header"),
        "env": _pairs(env, "--env"),
        "persistent": not per_call,
        "timeout": timeout,
    }
    with _errors():
        server = server_from_dict(data)
        ServerRegistry(_root(ctx)).register(server)
    click.echo(f"Attached {server.id} ({server.transport.value}: {server.endpoint})")


@mcp_cmd.command("detach")
@click.argument("server_id")
@click.pass_context
def mcp_detach(ctx: click.Context, server_id: str) -> None:
    """Remove a registered tool server."""
    _mediate(ctx, lambda m: m.bridge.unregister_server(server_id))
    click.echo(f"Detached {server_id}")


@mcp_cmd.command("list")
@click.pass_context
def mcp_list(ctx: click.Context) -> None:
    """List registered tool servers."""
    from actionguard.mcp.registry import ServerRegistry

    servers = ServerRegistry(_root(ctx)).list()
    if not servers:
        click.echo("No MCP servers attached.")
        return
    click.echo(f"{'ID':<20} {'Transport':<10} Endpoint")
    click.echo("-" * 60)
    for server in servers:
        click.echo(f"{server.id:<20} {server.transport.value:<10} {server.endpoint}")


@mcp_cmd.command("tools")
@click.argument("server_id", required=False)
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def mcp_tools(ctx: click.Context, server_id: str | None, timeout: float | None) -> None:
    """List tools advertised by one or all servers."""
    tools = _mediate(ctx, lambda m: m.bridge.list_tools(server_id, timeout=timeout))
    for sid, infos in tools.items():
        click.echo(f"{sid}:")
        if not infos:
            click.echo("  (no tools)")
        for info in infos:
            click.echo(f"  {info.name:<24} {info.description}")


@mcp_cmd.command("call")
@click.argument("server_id")
@click.argument("tool_name")
@click.argument("tool_input", required=False, default="{}")
@click.option("--yes", "-y", is_flag=True, help="Approve confirmations without prompting")
@click.option("--timeout", type=float, default=None, help="Deadline in seconds")
@click.pass_context
def mcp_call(
    ctx: click.Context,
    server_id: str,
    tool_name: str,
    tool_input: str,
    yes: bool,
    timeout: float | None,
) -> None:
    """Call TOOL_NAME on SERVER_ID with a JSON object as input."""
    try:
        payload = json.loads(tool_input)
    except ValueError as exc:
        raise click.BadParameter(f"invalid JSON: {exc}", param_hint="TOOL_INPUT") from exc
    if not isinstance(payload, dict):
        raise click.BadParameter("must be a JSON object", param_hint="TOOL_INPUT")
    result = _mediate(
        ctx, lambda m: m.call_tool(server_id, tool_name, payload, timeout=timeout), yes=yes,
    )
    content = result.content
    click.echo(content if isinstance(content, str) else json.dumps(content, indent=2, default=str))


@mcp_cmd.command("health")
@click.option("--timeout", type=float, default=5.0, help="Deadline per server in seconds")
@click.pass_context
def mcp_health(ctx: click.Context, timeout: float) -> None:
    """Probe every registered server."""
    results = _mediate(ctx, lambda m: m.bridge.health(timeout=timeout))
    if not results:
        click.echo("No MCP servers attached.")
        return
    for health in results:
        state = "ok" if health.ok else f"down ({health.error or health.status})"
        click.echo(f"{health.id:<20} {state}")
    if not all(h.ok for h in results):
        sys.exit(1)


# --- hooks subcommands ---


@click.group()
def hooks_cmd() -> None:
    """Run configured hooks."""


@hooks_cmd.command("run")
@click.argument("event", type=click.Choice([e.value for e in HookEvent]))
@click.option("--timeout", type=float, default=None, help="Deadline for all hooks in seconds")
@click.pass_context
def hooks_run(ctx: click.Context, event: str, timeout: float | None) -> None:
    """Run every hook configured for EVENT."""
    results = _mediate(ctx, lambda m: m.run_hooks(HookEvent(event), timeout=timeout))
    if not results:
        click.echo(f"No hooks for {event}.")
    for result in results:
        status = "ok" if result.success else "failed"
        click.echo(f"[{status}] {result.hook.run}")
        if result.output:
            click.echo(result.output)
        if result.error:
            click.echo(f"  {result.error}", err=True)
    if not all(r.success for r in results):
        sys.exit(1)
