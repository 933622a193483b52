"""Transports that carry tool calls to a server: stdio, HTTP and SSE.

stdio and SSE servers speak MCP through the ``mcp`` SDK's ClientSession;
HTTP servers are plain REST endpoints reached with httpx. Every transport
exposes the same async contract and classifies failures:

- :class:`TransportError` with ``transient=True`` for connection resets,
  5xx answers and children that died; the bridge retries these.
- :class:`TransportError` with ``transient=False`` for 4xx answers,
  malformed responses and servers that cannot be started.
- :class:`ToolExecutionError` when the server ran the tool and reported an
  error.

A deadline is enforced with ``asyncio.timeout``; on expiry the transport
releases its process or connection before ``TimeoutError`` propagates.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, NoReturn, TypeVar
from urllib.parse import quote

import anyio
import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED, CallToolResult, ListToolsResult

from actionguard.errors import ToolExecutionError, TransportError
from actionguard.types.mcp import McpServerConfig, ServerHealth, ToolInfo, TransportKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = "actionguard/0.1"


class Transport(ABC):
    """Abstract base for tool-server transports."""

    kind: TransportKind

    def __init__(self, config: McpServerConfig) -> None:
        self._config = config

    @property
    def config(self) -> McpServerConfig:
        return self._config

    @abstractmethod
    async def call(
        self, tool_name: str, arguments: dict[str, Any], *, timeout: float | None = None,
    ) -> Any:
        """Run a tool and return its structured result."""
        ...

    @abstractmethod
    async def list_tools(self, *, timeout: float | None = None) -> list[ToolInfo]:
        ...

    @abstractmethod
    async def health(self, *, timeout: float | None = None) -> ServerHealth:
        ...

    async def close(self) -> None:
        """Release any long-lived resource."""


def _classify_status(server_id: str, response: httpx.Response) -> TransportError:
    status = response.status_code
    return TransportError(
        f"{server_id} answered HTTP {status}",
        transient=status >= 500,
        status=status,
    )


# ---------------------------------------------------------------------------
# MCP sessions (stdio and SSE)
# ---------------------------------------------------------------------------


def _root_cause(exc: BaseException) -> BaseException:
    """The first failure inside anyio task-group wrapping."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def translate_error(server_id: str, exc: BaseException) -> BaseException:
    """Map an SDK, anyio or httpx failure onto the transport error kinds."""
    cause = _root_cause(exc)
    if isinstance(cause, (TransportError, ToolExecutionError, TimeoutError)):
        return cause
    if isinstance(cause, McpError):
        if cause.error.code == CONNECTION_CLOSED:
            return TransportError(f"{server_id} closed the connection", transient=True)
        return ToolExecutionError(
            f"{server_id} returned an error: {cause.error.message}",
            server_id=server_id,
            details=cause.error.model_dump(exclude_none=True),
        )
    if isinstance(cause, httpx.HTTPStatusError):
        return _classify_status(server_id, cause.response)
    if isinstance(cause, httpx.TimeoutException):
        return TimeoutError(f"{server_id}: {cause}")
    if isinstance(cause, (
        httpx.TransportError,
        anyio.ClosedResourceError,
        anyio.BrokenResourceError,
        anyio.EndOfStream,
        ConnectionError,
    )):
        return TransportError(
            f"{server_id} connection failed: {type(cause).__name__}: {cause}", transient=True,
        )
    if isinstance(cause, OSError):
        return TransportError(f"Cannot start MCP server {server_id}: {cause}", transient=False)
    return TransportError(f"{server_id} failed: {type(cause).__name__}: {cause}", transient=False)


def _reraise(server_id: str, exc: Exception) -> NoReturn:
    error = translate_error(server_id, exc)
    if error is exc:
        raise exc
    raise error from exc


def tool_payload(server_id: str, tool_name: str, result: CallToolResult) -> dict[str, Any]:
    """JSON form of a ``tools/call`` result; raises if it is flagged ``isError``."""
    payload = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    if result.isError:
        raise ToolExecutionError(
            f"Tool {tool_name} on {server_id} reported an error",
            server_id=server_id,
            tool_name=tool_name,
            details=payload,
        )
    return payload


def tool_infos(server_id: str, result: ListToolsResult) -> list[ToolInfo]:
    return [
        ToolInfo(
            server=server_id,
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema or None,
        )
        for tool in result.tools
    ]


# ---------------------------------------------------------------------------
# stdio
# ---------------------------------------------------------------------------


class _StdioConnection:
    """A live stdio session and the task that owns its SDK context.

    anyio scopes must be exited by the task that entered them, so one task
    opens the child, waits for :meth:`close` and then tears it down.
    """

    def __init__(self, server_id: str, params: StdioServerParameters) -> None:
        self._server_id = server_id
        self._params = params
        self._session: ClientSession | None = None
        self._ready: asyncio.Future[ClientSession] | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def session(self) -> ClientSession | None:
        return self._session

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    async def open(self) -> ClientSession:
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-stdio-{self._server_id}")
        return await self._ready

    async def _run(self) -> None:
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(stdio_client(self._params))
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self._session = session
                if not self._ready.done():
                    self._ready.set_result(session)
                await self._stop.wait()
        except Exception as exc:
            if not self._ready.done():
                self._ready.set_exception(exc)
            else:
                logger.debug("MCP server '%s' session ended: %r", self._server_id, exc)
        finally:
            self._session = None
            if not self._ready.done():
                self._ready.cancel()

    async def close(self) -> None:
        """Stop the child. Waits for the SDK to terminate it."""
        self._stop.set()
        task = self._task
        if task is None:
            return
        if self._session is None and not task.done():
            # Still starting up: nothing to shut down politely
            task.cancel()
        await asyncio.wait([task])


class StdioTransport(Transport):
    """MCP over a child process's stdin/stdout.

    A persistent server keeps one child alive across calls; calls are
    serialized because one child answers one request at a time here. A
    non-persistent server gets a fresh child per call.
    """

    kind = TransportKind.STDIO

    def __init__(self, config: McpServerConfig) -> None:
        super().__init__(config)
        self._conn: _StdioConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._conn is not None and self._conn.alive

    def _params(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self._config.command or "",
            args=list(self._config.args),
            env={**os.environ, **self._config.env},
        )

    async def _session(self) -> ClientSession:
        if self._conn is not None and self._conn.alive and self._conn.session is not None:
            return self._conn.session
        await self._shutdown()
        self._conn = _StdioConnection(self._config.id, self._params())
        session = await self._conn.open()
        logger.info("MCP server '%s' started", self._config.id)
        return session

    async def _shutdown(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    async def _exchange(
        self, op: Callable[[ClientSession], Awaitable[T]], timeout: float | None,
    ) -> T:
        async with self._lock:
            try:
                async with asyncio.timeout(timeout):
                    result = await op(await self._session())
            except Exception as exc:
                error = translate_error(self._config.id, exc)
                # The server answered, so a persistent child is still usable
                if not isinstance(error, ToolExecutionError) or not self._config.persistent:
                    await self._shutdown()
                if error is exc:
                    raise
                raise error from exc
            except BaseException:
                # Cancelled: the child may be mid-response
                await self._shutdown()
                raise
            if not self._config.persistent:
                await self._shutdown()
            return result

    async def call(
        self, tool_name: str, arguments: dict[str, Any], *, timeout: float | None = None,
    ) -> Any:
        result = await self._exchange(lambda s: s.call_tool(tool_name, arguments), timeout)
        return tool_payload(self._config.id, tool_name, result)

    async def list_tools(self, *, timeout: float | None = None) -> list[ToolInfo]:
        result = await self._exchange(lambda s: s.list_tools(), timeout)
        return tool_infos(self._config.id, result)

    async def health(self, *, timeout: float | None = None) -> ServerHealth:
        try:
            await self._exchange(lambda s: s.send_ping(), timeout)
        except ToolExecutionError:
            pass  # answered, just doesn't implement ping
        except (TransportError, TimeoutError) as exc:
            return ServerHealth(id=self._config.id, ok=False, error=str(exc) or type(exc).__name__)
        return ServerHealth(id=self._config.id, ok=True)

    async def close(self) -> None:
        async with self._lock:
            await self._shutdown()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def _json_body(server_id: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(
            f"{server_id} returned a non-JSON body", transient=False, status=response.status_code,
        ) from exc


def tools_from_payload(server_id: str, payload: Any) -> list[ToolInfo]:
    """Accept ``[...]`` or ``{"tools": [...]}``."""
    items = payload.get("tools") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise TransportError(f"Malformed tool list from {server_id}", transient=False)
    tools: list[ToolInfo] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        tools.append(ToolInfo(
            server=server_id,
            name=str(item["name"]),
            description=str(item.get("description") or ""),
            input_schema=item.get("inputSchema") or item.get("input_schema"),
        ))
    return tools


class HttpTransport(Transport):
    """One request per call: ``POST {url}/tools/{name}`` with ``{"input": ...}``.

    Falls back to ``{url}/.well-known/mcp/tools/{name}`` when the first
    endpoint answers 404.
    """

    kind = TransportKind.HTTP

    def __init__(self, config: McpServerConfig, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return (self._config.url or "").rstrip("/")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT, **self._config.headers},
                timeout=None,  # deadlines come from asyncio.timeout
                follow_redirects=True,
            )
        return self._client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http().request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"{self._config.id}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"{self._config.id} unreachable: {type(exc).__name__}: {exc}", transient=True,
            ) from exc

    def _endpoints(self, suffix: str) -> list[str]:
        return [f"{self.base_url}/{suffix}", f"{self.base_url}/.well-known/mcp/{suffix}"]

    async def _first_found(self, method: str, suffix: str, **kwargs: Any) -> httpx.Response:
        last: httpx.Response | None = None
        for url in self._endpoints(suffix):
            response = await self._send(method, url, **kwargs)
            if response.status_code == 404:
                last = response
                continue
            if response.is_error:
                raise _classify_status(self._config.id, response)
            return response
        assert last is not None
        raise _classify_status(self._config.id, last)

    async def call(
        self, tool_name: str, arguments: dict[str, Any], *, timeout: float | None = None,
    ) -> Any:
        async with asyncio.timeout(timeout):
            response = await self._first_found(
                "POST", f"tools/{quote(tool_name, safe='')}", json={"input": arguments},
            )
        return _json_body(self._config.id, response)

    async def list_tools(self, *, timeout: float | None = None) -> list[ToolInfo]:
        async with asyncio.timeout(timeout):
            response = await self._first_found("GET", "tools")
        return tools_from_payload(self._config.id, _json_body(self._config.id, response))

    async def health(self, *, timeout: float | None = None) -> ServerHealth:
        try:
            async with asyncio.timeout(timeout):
                response = await self._send("HEAD", self._config.url or "")
        except (TransportError, TimeoutError) as exc:
            return ServerHealth(id=self._config.id, ok=False, error=str(exc) or type(exc).__name__)
        status = response.status_code
        return ServerHealth(id=self._config.id, ok=200 <= status < 500, status=status)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# SSE
# ---------------------------------------------------------------------------


class SseTransport(Transport):
    """MCP over an event stream, with requests POSTed to the announced endpoint.

    A session (stream plus ``initialize``) is opened per call and always
    closed when the call finishes, fails, times out or is cancelled.
    ``client_factory`` is handed to the SDK to build its httpx client.
    """

    kind = TransportKind.SSE

    def __init__(
        self,
        config: McpServerConfig,
        *,
        client_factory: Callable[..., httpx.AsyncClient] | None = None,
    ) -> None:
        super().__init__(config)
        self._client_factory = client_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[ClientSession]:
        options: dict[str, Any] = {"headers": {"User-Agent": USER_AGENT, **self._config.headers}}
        if self._client_factory is not None:
            options["httpx_client_factory"] = self._client_factory
        async with AsyncExitStack() as stack:
            read, write = await stack.enter_async_context(
                sse_client(self._config.url or "", **options),
            )
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
            yield session

    async def _exchange(
        self, op: Callable[[ClientSession], Awaitable[T]], timeout: float | None,
    ) -> T:
        try:
            async with asyncio.timeout(timeout):
                async with self._session() as session:
                    return await op(session)
        except Exception as exc:
            _reraise(self._config.id, exc)

    async def call(
        self, tool_name: str, arguments: dict[str, Any], *, timeout: float | None = None,
    ) -> Any:
        result = await self._exchange(lambda s: s.call_tool(tool_name, arguments), timeout)
        return tool_payload(self._config.id, tool_name, result)

    async def list_tools(self, *, timeout: float | None = None) -> list[ToolInfo]:
        result = await self._exchange(lambda s: s.list_tools(), timeout)
        return tool_infos(self._config.id, result)

    async def health(self, *, timeout: float | None = None) -> ServerHealth:
        try:
            await self._exchange(lambda s: s.send_ping(), timeout)
        except (TransportError, ToolExecutionError, TimeoutError) as exc:
            return ServerHealth(id=self._config.id, ok=False, error=str(exc) or type(exc).__name__)
        return ServerHealth(id=self._config.id, ok=True)


def create_transport(
    config: McpServerConfig, *, client: httpx.AsyncClient | None = None,
) -> Transport:
    """Factory to create the transport for a server config.

    A shared *client* is only used for plain HTTP servers.
    """
    if config.transport is TransportKind.STDIO:
        return StdioTransport(config)
    if config.transport is TransportKind.HTTP:
        return HttpTransport(config, client=client)
    if config.transport is TransportKind.SSE:
        return SseTransport(config)
    raise ValueError(f"Unknown transport: {config.transport}")
