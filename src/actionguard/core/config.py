"""Configuration loading (layered YAML, env vars, .env)."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from dotenv import load_dotenv

from actionguard.errors import ValidationError
from actionguard.types.hooks import HookCommand, HookEvent
from actionguard.types.permissions import (
    ConfigScope,
    PermissionAction,
    PermissionRule,
    PermissionSet,
    RuleMatch,
)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

logger = logging.getLogger(__name__)

PROJECT_DIR = ".actionguard"
CONFIG_FILE = "config.yaml"
DEFAULT_HOOK_TIMEOUT = 30.0


def project_dir(root: str | Path) -> Path:
    """Directory holding project-scope state (config, journal, registry)."""
    return Path(root) / PROJECT_DIR


def project_config_path(root: str | Path) -> Path:
    return project_dir(root) / CONFIG_FILE


def global_config_path() -> Path:
    """Global config, ``$ACTIONGUARD_CONFIG_HOME/config.yaml`` if set."""
    if home := os.environ.get("ACTIONGUARD_CONFIG_HOME"):
        return Path(home).expanduser() / CONFIG_FILE
    return Path.home() / ".config" / "actionguard" / CONFIG_FILE


def read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping. Missing, unreadable or malformed files read as {}."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.warning("Cannot read config file %s: %s", path, exc)
        return {}
    except yaml.YAMLError as exc:
        logger.warning("Failed to parse YAML config %s: %s", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, ignoring", path)
        return {}
    return data


def write_yaml(path: Path, data: dict[str, Any]) -> None:
    """Write a YAML mapping, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(data, sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )


class LayeredConfig:
    """Global + project YAML config for one project root.

    Loaded once on construction; call :meth:`reload` to pick up changes.
    Writes only ever go to the project file.
    """

    def __init__(self, root: str | Path, *, global_path: Path | None = None) -> None:
        self._root = Path(root)
        self._global_path = global_path or global_config_path()
        self._project_path = project_config_path(self._root)
        self._global: dict[str, Any] = {}
        self._project: dict[str, Any] = {}
        self.reload()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def global_path(self) -> Path:
        return self._global_path

    @property
    def project_path(self) -> Path:
        return self._project_path

    def reload(self) -> None:
        self._global = read_yaml(self._global_path)
        self._project = read_yaml(self._project_path)

    def section(self, scope: ConfigScope, key: str) -> Any:
        source = self._global if scope is ConfigScope.GLOBAL else self._project
        return source.get(key)

    def merged(self) -> dict[str, Any]:
        """Top-level keys, project overriding global."""
        return {**self._global, **self._project}

    def save_project_section(self, key: str, value: Any) -> None:
        """Replace one top-level key of the project file, keeping the rest."""
        current = read_yaml(self._project_path)
        current[key] = value
        write_yaml(self._project_path, current)
        self._project = current

    # -- permissions ------------------------------------------------------

    def permission_set(self) -> PermissionSet:
        """Merge permissions: defaults per tool (project wins), rules concatenated."""
        defaults: dict[str, PermissionAction] = {}
        rules: list[PermissionRule] = []
        for scope in (ConfigScope.GLOBAL, ConfigScope.PROJECT):
            section = self.section(scope, "permissions") or {}
            if not isinstance(section, dict):
                logger.error("'permissions' in %s config is not a mapping", scope.value)
                continue
            defaults.update(_parse_defaults(section.get("defaults"), scope))
            rules.extend(_parse_rules(section.get("rules"), scope))
        return PermissionSet(defaults=MappingProxyType(defaults), rules=tuple(rules))

    def project_permissions(self) -> dict[str, Any]:
        section = self.section(ConfigScope.PROJECT, "permissions")
        return dict(section) if isinstance(section, dict) else {}

    # -- hooks --------------------------------------------------------------

    def hooks(self) -> list[HookCommand]:
        """Hooks from the merged ``hooks`` section (project replaces global)."""
        section = self.merged().get("hooks") or {}
        if not isinstance(section, dict):
            logger.error("'hooks' config is not a mapping")
            return []
        hooks: list[HookCommand] = []
        for event_name, entries in section.items():
            if not isinstance(entries, list):
                logger.error("Hooks for '%s' are not a list", event_name)
                continue
            for entry in entries:
                hook = _parse_hook(str(event_name), entry)
                if hook is not None:
                    hooks.append(hook)
        return hooks


def parse_action(value: Any) -> PermissionAction:
    try:
        return PermissionAction(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown permission action {value!r}; expected allow, deny or confirm"
        ) from None


def parse_rule(
    data: Any, *, scope: ConfigScope = ConfigScope.PROJECT, index: int = -1,
) -> PermissionRule:
    """Build a rule from its YAML form ``{match: {...}, action}``."""
    if not isinstance(data, dict):
        raise ValidationError(f"Permission rule must be a mapping, got {type(data).__name__}")
    match = data.get("match") or {}
    if not isinstance(match, dict):
        raise ValidationError("Permission rule 'match' must be a mapping")
    unknown = set(match) - {"tool", "path", "command"}
    if unknown:
        raise ValidationError(f"Unknown match fields: {', '.join(sorted(unknown))}")
    return PermissionRule(
        match=RuleMatch(
            tool=_opt_str(match.get("tool")),
            path=_opt_str(match.get("path")),
            command=_opt_str(match.get("command")),
        ),
        action=parse_action(data.get("action")),
        scope=scope,
        index=index,
    )


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _parse_defaults(raw: Any, scope: ConfigScope) -> dict[str, PermissionAction]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.error("permissions.defaults in %s config is not a mapping", scope.value)
        return {}
    out: dict[str, PermissionAction] = {}
    for tool, action in raw.items():
        try:
            out[str(tool)] = parse_action(action)
        except ValidationError as exc:
            logger.error("Skipping default for %s in %s config: %s", tool, scope.value, exc)
    return out


def _parse_rules(raw: Any, scope: ConfigScope) -> list[PermissionRule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.error("permissions.rules in %s config is not a list", scope.value)
        return []
    rules: list[PermissionRule] = []
    for i, item in enumerate(raw):
        try:
            rules.append(parse_rule(item, scope=scope, index=i))
        except ValidationError as exc:
            logger.error("Skipping %s rule #%d: %s", scope.value, i, exc)
    return rules


def _parse_hook(event_name: str, entry: Any) -> HookCommand | None:
    if not isinstance(entry, dict) or not entry.get("run"):
        logger.error("Skipping malformed %s hook: %r", event_name, entry)
        return None

    if event_name == "on-apply":
        # Legacy form: one list, routed by 'when'
        when = entry.get("when", "before")
        event = HookEvent.POST_APPLY if when == "after" else HookEvent.PRE_APPLY
    else:
        try:
            event = HookEvent(event_name)
        except ValueError:
            logger.error("Unknown hook event '%s'", event_name)
            return None

    timeout_ms = entry.get("timeout_ms", DEFAULT_HOOK_TIMEOUT * 1000)
    try:
        timeout = float(timeout_ms) / 1000
    except (TypeError, ValueError):
        timeout = 0.0
    if isinstance(timeout_ms, bool) or not timeout > 0:
        logger.error("Skipping %s hook with invalid timeout_ms %r", event_name, timeout_ms)
        return None
    return HookCommand(
        event=event,
        run=str(entry["run"]),
        timeout=timeout,
        required=bool(entry.get("required", False)),
    )
