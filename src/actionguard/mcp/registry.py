"""Persistent registry of tool servers (``.actionguard/mcp-servers.json``)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from actionguard.core.config import project_dir
from actionguard.errors import NotFoundError, ValidationError
from actionguard.types.mcp import McpServerConfig, TransportKind

logger = logging.getLogger(__name__)

REGISTRY_FILE = "mcp-servers.json"


def server_from_dict(data: dict[str, Any]) -> McpServerConfig:
    """Build and validate a server config from its JSON form."""
    if not isinstance(data, dict):
        raise ValidationError("Server entry must be a JSON object")
    server_id = str(data.get("id") or "").strip()
    if not server_id:
        raise ValidationError("Server entry needs a non-empty 'id'")

    url = data.get("url")
    command = data.get("command")
    transport_name = data.get("transport") or ("stdio" if command and not url else "http")
    try:
        transport = TransportKind(str(transport_name).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown transport {transport_name!r} for server {server_id}"
        ) from None

    if transport is TransportKind.STDIO and not command:
        raise ValidationError(f"stdio server {server_id} needs a 'command'")
    if transport is not TransportKind.STDIO:
        if not url or not str(url).startswith(("http://", "https://")):
            raise ValidationError(
                f"{transport.value} server {server_id} needs an http(s) 'url'"
            )

    args = data.get("args") or []
    if not isinstance(args, list):
        raise ValidationError(f"'args' of server {server_id} must be a list")
    return McpServerConfig(
        id=server_id,
        transport=transport,
        url=str(url) if url else None,
        command=str(command) if command else None,
        args=tuple(str(a) for a in args),
        headers=_string_map(data, "headers", server_id),
        env=_string_map(data, "env", server_id),
        persistent=bool(data.get("persistent", True)),
        timeout=_timeout(data.get("timeout"), server_id),
    )


def _string_map(data: dict[str, Any], key: str, server_id: str) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"'{key}' of server {server_id} must be an object")
    return {str(k): str(v) for k, v in value.items()}


def _timeout(value: Any, server_id: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid timeout {value!r} for server {server_id}")
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid timeout {value!r} for server {server_id}") from None
    if not timeout > 0:
        raise ValidationError(f"Timeout for server {server_id} must be positive")
    return timeout


class ServerRegistry:
    """Known tool servers for a project, persisted as a JSON array."""

    def __init__(self, root: str | Path | None = None, *, path: Path | None = None) -> None:
        if path is None and root is not None:
            path = project_dir(root) / REGISTRY_FILE
        self._path = path  # None keeps the registry in memory only
        self._servers: dict[str, McpServerConfig] = {}
        self.reload()

    @property
    def path(self) -> Path | None:
        return self._path

    def reload(self) -> None:
        self._servers = {}
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable server registry %s, treating as empty: %s", self._path, exc)
            return
        if not isinstance(raw, list):
            logger.warning("Server registry %s is not a JSON array", self._path)
            return
        for item in raw:
            try:
                server = server_from_dict(item)
            except ValidationError as exc:
                logger.error("Skipping invalid server entry %r: %s", item, exc)
                continue
            self._servers[server.id] = server

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [s.to_dict() for s in self._servers.values()]
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def register(self, server: McpServerConfig) -> None:
        """Add a server. Duplicate ids are rejected."""
        if server.id in self._servers:
            raise ValidationError(f"MCP server already registered: {server.id}")
        self._servers[server.id] = server
        self._save()

    def unregister(self, server_id: str) -> McpServerConfig:
        try:
            server = self._servers.pop(server_id)
        except KeyError:
            raise NotFoundError(f"No MCP server: {server_id}") from None
        self._save()
        return server

    def get(self, server_id: str) -> McpServerConfig:
        try:
            return self._servers[server_id]
        except KeyError:
            raise NotFoundError(f"No MCP server: {server_id}") from None

    def list(self) -> list[McpServerConfig]:
        return list(self._servers.values())

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._servers

    def __len__(self) -> int:
        return len(self._servers)
