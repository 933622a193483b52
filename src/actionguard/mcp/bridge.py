"""ToolDispatchBridge: policy-gated tool calls routed to registered servers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from actionguard.errors import (
    OperationTimeout,
    PermissionConfirmRequired,
    PermissionDenied,
    ToolExecutionError,
    TransportError,
    ValidationError,
)
from actionguard.mcp.registry import ServerRegistry
from actionguard.mcp.transports import Transport, create_transport
from actionguard.permissions.approval import ConfirmationChannel, describe_action
from actionguard.permissions.engine import PolicyEngine
from actionguard.types.mcp import (
    McpServerConfig,
    ServerHealth,
    ToolCallRequest,
    ToolInfo,
    ToolResult,
)
from actionguard.types.permissions import PermissionAction, PermissionQuery

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How transient transport failures are retried."""

    retries: int = 1
    backoff: float = 0.25  # seconds before each retry


def query_for_call(tool_name: str, tool_input: dict[str, Any]) -> PermissionQuery:
    """Build the permission query for a tool call from its input."""
    path = tool_input.get("path", tool_input.get("file_path"))
    command = tool_input.get("command")
    return PermissionQuery(
        tool=tool_name,
        path=path if isinstance(path, str) else None,
        command=command if isinstance(command, str) else None,
    )


class ToolDispatchBridge:
    """Routes tool calls to stdio/HTTP/SSE servers behind the policy engine.

    Calls to different servers may run concurrently; a stdio server's
    transport serializes its own calls.
    """

    def __init__(
        self,
        policy: PolicyEngine,
        registry: ServerRegistry | None = None,
        *,
        confirmation: ConfirmationChannel | None = None,
        retry: RetryPolicy | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._policy = policy
        self._registry = registry or ServerRegistry()
        self._confirmation = confirmation
        self._retry = retry or RetryPolicy()
        self._default_timeout = default_timeout
        self._http_client = http_client
        self._transports: dict[str, Transport] = {}

    @property
    def registry(self) -> ServerRegistry:
        return self._registry

    # -- registry -------------------------------------------------------------

    def register_server(self, server: McpServerConfig) -> None:
        """Add a server. Duplicate ids raise :class:`ValidationError`."""
        self._registry.register(server)
        logger.info("Registered MCP server: %s (%s)", server.id, server.transport.value)

    async def unregister_server(self, server_id: str) -> None:
        """Remove a server and release its transport."""
        self._registry.unregister(server_id)
        transport = self._transports.pop(server_id, None)
        if transport is not None:
            await transport.close()
        logger.info("Unregistered MCP server: %s", server_id)

    def list_servers(self) -> list[McpServerConfig]:
        return self._registry.list()

    async def _transport(self, server: McpServerConfig) -> Transport:
        """The transport for *server*, replacing one built for an older config."""
        transport = self._transports.get(server.id)
        if transport is not None and transport.config == server:
            return transport
        if transport is not None:
            # Re-registered with new settings: release the old child or client first
            await transport.close()
        transport = create_transport(server, client=self._http_client)
        self._transports[server.id] = transport
        return transport

    def _deadline(self, server: McpServerConfig, timeout: float | None) -> float:
        if timeout is not None:
            return timeout
        if server.timeout is not None:
            return server.timeout
        return self._default_timeout

    async def list_tools(
        self, server_id: str | None = None, *, timeout: float | None = None,
    ) -> dict[str, list[ToolInfo]]:
        """Tools per server. A server that fails to answer lists as empty."""
        servers = [self._registry.get(server_id)] if server_id else self._registry.list()
        out: dict[str, list[ToolInfo]] = {}
        for server in servers:
            try:
                transport = await self._transport(server)
                out[server.id] = await transport.list_tools(
                    timeout=self._deadline(server, timeout),
                )
            except (TransportError, ToolExecutionError, TimeoutError) as exc:
                logger.warning("Cannot list tools for '%s': %s", server.id, exc)
                out[server.id] = []
        return out

    async def health(
        self, server_id: str | None = None, *, timeout: float | None = None,
    ) -> list[ServerHealth]:
        servers = [self._registry.get(server_id)] if server_id else self._registry.list()
        transports = [await self._transport(s) for s in servers]
        results = await asyncio.gather(*(
            t.health(timeout=self._deadline(s, timeout)) for s, t in zip(servers, transports)
        ))
        return list(results)

    # -- dispatch ---------------------------------------------------------------

    async def _authorize(self, server_id: str, tool_name: str, tool_input: dict[str, Any]) -> None:
        action = self._policy.check(query_for_call(tool_name, tool_input))
        if action is PermissionAction.ALLOW:
            return
        if action is PermissionAction.DENY:
            raise PermissionDenied(tool_name)
        if self._confirmation is None:
            raise PermissionConfirmRequired(tool_name)
        args = {"server": server_id, **tool_input}
        approved = await self._confirmation.request_approval(
            tool_name, args, describe_action(tool_name, args),
        )
        if not approved:
            raise PermissionDenied(tool_name, "declined by user")

    async def call_tool(
        self,
        server_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """Authorize and run *tool_name* on *server_id*.

        Raises NotFoundError, PermissionDenied, PermissionConfirmRequired,
        OperationTimeout or ToolExecutionError.
        """
        tool_input = tool_input or {}
        if not isinstance(tool_input, dict):
            raise ValidationError("Tool input must be a JSON object")
        server = self._registry.get(server_id)
        await self._authorize(server_id, tool_name, tool_input)

        transport = await self._transport(server)
        deadline = self._deadline(server, timeout)
        attempts = 0
        while True:
            attempts += 1
            try:
                content = await transport.call(tool_name, tool_input, timeout=deadline)
            except TimeoutError as exc:
                raise OperationTimeout(
                    f"{tool_name} on {server_id} timed out after {deadline}s"
                ) from exc
            except ToolExecutionError as exc:
                exc.server_id = server_id
                exc.tool_name = tool_name
                exc.transport = server.transport.value
                exc.attempts = attempts
                raise
            except TransportError as exc:
                if exc.transient and attempts <= self._retry.retries:
                    logger.warning(
                        "Transient failure calling %s on %s (attempt %d): %s; retrying",
                        tool_name, server_id, attempts, exc,
                    )
                    await asyncio.sleep(self._retry.backoff)
                    continue
                raise ToolExecutionError(
                    f"{tool_name} on {server_id} failed: {exc}",
                    server_id=server_id,
                    tool_name=tool_name,
                    transport=server.transport.value,
                    attempts=attempts,
                    details={"transient": exc.transient, "status": exc.status},
                ) from exc
            return ToolResult(
                server_id=server_id, tool_name=tool_name, content=content, attempts=attempts,
            )

    async def call_request(
        self, request: ToolCallRequest, *, timeout: float | None = None,
    ) -> ToolResult:
        return await self.call_tool(
            request.server_id, request.tool_name, request.input, timeout=timeout,
        )

    async def close(self) -> None:
        """Release every transport."""
        for server_id, transport in list(self._transports.items()):
            try:
                await transport.close()
            except (OSError, httpx.HTTPError) as exc:
                logger.warning("Error closing transport for '%s': %s", server_id, exc)
        self._transports.clear()

    async def __aenter__(self) -> ToolDispatchBridge:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
