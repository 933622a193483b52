"""Permission types: actions, rules, queries and the merged rule set."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class PermissionAction(Enum):
    """Outcome of a permission check."""

    ALLOW = "allow"
    DENY = "deny"
    CONFIRM = "confirm"


# Higher is more restrictive
ACTION_SEVERITY = {
    PermissionAction.ALLOW: 0,
    PermissionAction.CONFIRM: 1,
    PermissionAction.DENY: 2,
}


class ConfigScope(Enum):
    """Where a rule or default was loaded from."""

    GLOBAL = "global"
    PROJECT = "project"


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """Conjunctive match fields. ``None`` means wildcard."""

    tool: str | None = None
    path: str | None = None  # glob
    command: str | None = None  # regex, searched

    def to_dict(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if self.tool is not None:
            out["tool"] = self.tool
        if self.path is not None:
            out["path"] = self.path
        if self.command is not None:
            out["command"] = self.command
        return out


@dataclass(frozen=True, slots=True)
class PermissionRule:
    """A match pattern plus the action it yields."""

    match: RuleMatch
    action: PermissionAction
    scope: ConfigScope = ConfigScope.PROJECT
    index: int = -1  # position inside its scope's rule list

    def to_dict(self) -> dict[str, Any]:
        return {"match": self.match.to_dict(), "action": self.action.value}


@dataclass(frozen=True, slots=True)
class PermissionQuery:
    """What the caller wants to do."""

    tool: str
    path: str | None = None
    command: str | None = None


@dataclass(frozen=True, slots=True)
class PermissionSet:
    """Immutable snapshot of merged global + project permissions."""

    defaults: Mapping[str, PermissionAction] = field(
        default_factory=lambda: MappingProxyType({}),
    )
    rules: tuple[PermissionRule, ...] = ()


@dataclass(frozen=True, slots=True)
class Decision:
    """A permission decision together with what produced it."""

    action: PermissionAction
    rule: PermissionRule | None = None
    source: str = "fallback"  # "rule", "default" or "fallback"
