"""Permission engine: path matching, rule evaluation and confirmation."""

from actionguard.permissions.approval import (
    ConfirmationChannel,
    RichConfirmation,
    StaticConfirmation,
    describe_action,
)
from actionguard.permissions.engine import PolicyEngine, build_permission_set
from actionguard.permissions.matcher import PathMatcher, glob_match

__all__ = [
    "ConfirmationChannel",
    "PathMatcher",
    "PolicyEngine",
    "RichConfirmation",
    "StaticConfirmation",
    "build_permission_set",
    "describe_action",
    "glob_match",
]
