"""Segment-aware path globbing for permission rules.

``*`` and ``?`` never cross a ``/``. A ``**`` segment matches zero or more
whole segments; ``**`` inside a segment behaves like ``*``. Matching is
case-sensitive everywhere so rule evaluation does not depend on the host OS.
"""

from __future__ import annotations

import fnmatch
from functools import lru_cache

from actionguard.errors import ValidationError


def normalize_path(path: str) -> str:
    """Use forward slashes and drop leading ``./`` components."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


class PathMatcher:
    """A compiled path glob."""

    __slots__ = ("pattern", "_segments")

    def __init__(self, pattern: str) -> None:
        if not pattern:
            raise ValidationError("Path pattern must not be empty")
        if "\x00" in pattern:
            raise ValidationError("Path pattern must not contain NUL")
        self.pattern = pattern
        segments = normalize_path(pattern).split("/")
        # Collapse runs of '**' so matching stays linear in practice
        collapsed: list[str] = []
        for seg in segments:
            if seg == "**" and collapsed and collapsed[-1] == "**":
                continue
            collapsed.append(seg)
        self._segments = tuple(collapsed)

    def __repr__(self) -> str:
        return f"PathMatcher({self.pattern!r})"

    def matches(self, path: str) -> bool:
        parts = tuple(normalize_path(path).split("/"))
        return _match_segments(self._segments, parts)


@lru_cache(maxsize=4096)
def _match_segments(pattern: tuple[str, ...], parts: tuple[str, ...]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        # Zero segments, or consume one and stay on '**'
        if _match_segments(rest, parts):
            return True
        return bool(parts) and _match_segments(pattern, parts[1:])
    if not parts:
        return False
    return _segment_matches(head, parts[0]) and _match_segments(rest, parts[1:])


def _segment_matches(pattern: str, segment: str) -> bool:
    while "**" in pattern:
        pattern = pattern.replace("**", "*")
    return fnmatch.fnmatchcase(segment, pattern)


def glob_match(path: str, pattern: str) -> bool:
    """One-shot convenience wrapper around :class:`PathMatcher`."""
    return PathMatcher(pattern).matches(path)
