"""PolicyEngine: ordered rule evaluation over layered YAML permissions.

Evaluation order:
1. Rules, in merged registration order (global first, then project).
   The first rule whose declared match fields all agree wins.
2. ``defaults[tool]``
3. allow
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from actionguard.core.config import LayeredConfig, parse_action, parse_rule
from actionguard.errors import ValidationError
from actionguard.permissions.matcher import PathMatcher
from actionguard.types.permissions import (
    ConfigScope,
    Decision,
    PermissionAction,
    PermissionQuery,
    PermissionRule,
    PermissionSet,
)

logger = logging.getLogger(__name__)

# Maximum allowed length for a regex pattern to mitigate ReDoS.
_MAX_REGEX_LEN = 1024


@dataclass(frozen=True, slots=True)
class CompiledRule:
    """A rule with its patterns compiled. ``defect`` rules never match."""

    rule: PermissionRule
    path: PathMatcher | None = None
    command: re.Pattern[str] | None = None
    defect: str | None = None

    def matches(self, query: PermissionQuery) -> bool:
        if self.defect is not None:
            return False
        m = self.rule.match
        if m.tool is not None and m.tool != query.tool:
            return False
        if self.path is not None:
            if query.path is None or not self.path.matches(query.path):
                return False
        if self.command is not None:
            if query.command is None or not self.command.search(query.command):
                return False
        return True


def compile_rule(rule: PermissionRule) -> CompiledRule:
    """Compile a rule's patterns, raising ``ValidationError`` if either is bad."""
    path = PathMatcher(rule.match.path) if rule.match.path is not None else None
    command = None
    if rule.match.command is not None:
        if len(rule.match.command) > _MAX_REGEX_LEN:
            raise ValidationError(f"command pattern exceeds {_MAX_REGEX_LEN} chars")
        try:
            command = re.compile(rule.match.command)
        except re.error as exc:
            raise ValidationError(
                f"Invalid command regex {rule.match.command!r}: {exc}"
            ) from exc
    return CompiledRule(rule=rule, path=path, command=command)


def _compile_or_flag(rule: PermissionRule) -> CompiledRule:
    try:
        return compile_rule(rule)
    except ValidationError as exc:
        logger.error(
            "Permission rule %s#%d is defective and will never match: %s",
            rule.scope.value, rule.index, exc,
        )
        return CompiledRule(rule=rule, defect=str(exc))


class PolicyEngine:
    """Evaluates permission queries against one immutable PermissionSet snapshot.

    The snapshot is taken at construction and replaced only by :meth:`reload`
    or by the mutators, which persist to the project config file.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        config: LayeredConfig | None = None,
        permission_set: PermissionSet | None = None,
    ) -> None:
        if config is None and root is not None and permission_set is None:
            config = LayeredConfig(root)
        self._config = config
        self._set = PermissionSet()
        self._compiled: tuple[CompiledRule, ...] = ()
        if permission_set is not None:
            self._install(permission_set)
        else:
            self.reload()

    @property
    def permission_set(self) -> PermissionSet:
        return self._set

    @property
    def rules(self) -> tuple[PermissionRule, ...]:
        return self._set.rules

    @property
    def defects(self) -> list[tuple[PermissionRule, str]]:
        """Rules that failed to compile, with the reason."""
        return [(c.rule, c.defect) for c in self._compiled if c.defect is not None]

    def reload(self) -> None:
        """Re-read the layered config and swap in a fresh snapshot."""
        if self._config is None:
            return
        self._config.reload()
        self._install(self._config.permission_set())

    def _install(self, permission_set: PermissionSet) -> None:
        self._set = permission_set
        self._compiled = tuple(_compile_or_flag(r) for r in permission_set.rules)

    # -- evaluation ---------------------------------------------------------

    def explain(self, query: PermissionQuery) -> Decision:
        """Decide and report which rule or default produced the decision."""
        for compiled in self._compiled:
            if compiled.matches(query):
                return Decision(
                    action=compiled.rule.action, rule=compiled.rule, source="rule",
                )
        default = self._set.defaults.get(query.tool)
        if default is not None:
            return Decision(action=default, source="default")
        return Decision(action=PermissionAction.ALLOW, source="fallback")

    def check(self, query: PermissionQuery) -> PermissionAction:
        """Return allow, deny or confirm for *query*."""
        decision = self.explain(query)
        logger.debug(
            "Permission %s for %s (path=%s command=%s) via %s",
            decision.action.value, query.tool, query.path, query.command, decision.source,
        )
        return decision.action

    # -- mutators (project scope only) ----------------------------------------

    def _require_config(self) -> LayeredConfig:
        if self._config is None:
            raise ValidationError("This PolicyEngine has no project config to write to")
        return self._config

    def _save_project(self, permissions: dict[str, Any]) -> None:
        config = self._require_config()
        config.save_project_section("permissions", permissions)
        self._install(config.permission_set())

    def set_default(self, tool: str, action: PermissionAction | str) -> None:
        """Set the project default action for *tool*."""
        if not isinstance(action, PermissionAction):
            action = parse_action(action)
        current = self._require_config().project_permissions()
        defaults = dict(current.get("defaults") or {})
        defaults[tool] = action.value
        current["defaults"] = defaults
        self._save_project(current)

    def add_rule(self, rule: PermissionRule | dict[str, Any]) -> PermissionRule:
        """Append a validated rule to the project rule list."""
        if isinstance(rule, dict):
            rule = parse_rule(rule)
        compile_rule(rule)
        current = self._require_config().project_permissions()
        rules = list(current.get("rules") or [])
        rules.append(rule.to_dict())
        current["rules"] = rules
        self._save_project(current)
        return PermissionRule(
            match=rule.match, action=rule.action,
            scope=ConfigScope.PROJECT, index=len(rules) - 1,
        )

    def remove_rule(self, index: int) -> None:
        """Remove the project rule at *index*."""
        current = self._require_config().project_permissions()
        rules = list(current.get("rules") or [])
        if index < 0 or index >= len(rules):
            raise ValidationError(
                f"No project rule at index {index} ({len(rules)} rules configured)"
            )
        del rules[index]
        current["rules"] = rules
        self._save_project(current)


def build_permission_set(
    rules: list[dict[str, Any]] | None = None,
    defaults: dict[str, str] | None = None,
) -> PermissionSet:
    """Build a snapshot directly from plain data (tests, embedding)."""
    parsed = tuple(
        parse_rule(r, scope=ConfigScope.PROJECT, index=i)
        for i, r in enumerate(rules or [])
    )
    return PermissionSet(
        defaults=MappingProxyType({t: parse_action(a) for t, a in (defaults or {}).items()}),
        rules=parsed,
    )
