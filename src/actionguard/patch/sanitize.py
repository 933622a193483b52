"""Normalize model-written diffs into canonical unified-diff text."""

from __future__ import annotations

import re

from actionguard.types.patch import SanitizedDiff

# Column 0 only: a hunk context line (" ```python") must survive
_SENTINEL_RE = re.compile(r"^\*\*\*[ \t]+(?:begin|end)[ \t]+patch\b", re.IGNORECASE)
_FENCE_RE = re.compile(r"^```")

# (?![ \t]) stops the engine from backtracking into the separator whitespace
_OLD_HEADER_RE = re.compile(r"^---[ \t]+(?![ \t])(.+)$")
_NEW_HEADER_RE = re.compile(r"^\+\+\+[ \t]+(?![ \t])(.+)$")


def _with_prefix(path: str, prefix: str) -> str:
    if path.startswith(prefix) or path.startswith("/dev/null"):
        return path
    return prefix + path


def _rewrite_headers(lines: list[str]) -> list[str]:
    """Give each ``---``/``+++`` header pair ``a/`` and ``b/`` prefixes.

    Only a ``---`` line directly followed by a ``+++`` line is a header, so
    removed lines that happen to start with ``--`` are left alone.
    """
    out = list(lines)
    for i in range(len(out) - 1):
        old = _OLD_HEADER_RE.match(out[i])
        new = _NEW_HEADER_RE.match(out[i + 1])
        if old and new:
            out[i] = "--- " + _with_prefix(old.group(1), "a/")
            out[i + 1] = "+++ " + _with_prefix(new.group(1), "b/")
    return out


def sanitize(raw: str | None) -> SanitizedDiff:
    """Return *raw* in canonical unified-diff form.

    Line endings are normalized first, then ``*** Begin/End Patch`` sentinel
    lines and markdown fence lines are dropped, the text is trimmed, and
    ``---``/``+++`` header pairs gain ``a/``/``b/`` prefixes. Idempotent.
    """
    text = (raw or "").replace("\r\n", "\n").replace("\r", "\n")
    # Trimming can move an indented fence to column 0, so filter until stable
    while True:
        lines = [
            line for line in text.split("\n")
            if not _SENTINEL_RE.match(line) and not _FENCE_RE.match(line)
        ]
        trimmed = "\n".join(lines).strip()
        if trimmed == text:
            break
        text = trimmed
    return SanitizedDiff("\n".join(_rewrite_headers(text.split("\n"))))


def is_sanitized(text: str) -> bool:
    return sanitize(text) == text
