"""Configured pre/post commands around mediated actions."""

from actionguard.hooks.runner import HookRunner

__all__ = ["HookRunner"]
