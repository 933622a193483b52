"""Read-only inspection of diffs: extraction, per-file stats, security review."""

from __future__ import annotations

import re

from actionguard.patch.sanitize import sanitize
from actionguard.types.patch import FileChange, Finding, Severity

_PATCH_BLOCK_RE = re.compile(r"\*\*\* Begin Patch[\s\S]*?\*\*\* End Patch")

_GIT_HEADER_RE = re.compile(r'^diff --git "?a/(.+?)"? "?b/(.+?)"?$')
_EXTENDED_RE = re.compile(r"^(rename|copy) (from|to) (.+)$")

_PREVIEW_LINES = 10


def extract_patch(text: str) -> str | None:
    """Return the first ``*** Begin Patch … *** End Patch`` block in *text*."""
    m = _PATCH_BLOCK_RE.search(text or "")
    return m.group(0) if m else None


def _strip_prefix(path: str, prefix: str) -> str:
    path = path.split("\t", 1)[0].strip()
    return path[len(prefix):] if path.startswith(prefix) else path


def _unquote(path: str) -> str:
    return path[1:-1] if len(path) > 1 and path[0] == path[-1] == '"' else path


def diff_files(diff: str) -> list[FileChange]:
    """Summarize each file touched by *diff* (sanitized first).

    Understands git extended headers, so a rename or copy with no hunks
    still reports both its source and destination.
    """
    changes: list[FileChange] = []
    current: FileChange | None = None
    in_git_header = False  # between 'diff --git' and the first hunk
    lines = sanitize(diff).split("\n")

    for i, line in enumerate(lines):
        git_header = _GIT_HEADER_RE.match(line)
        if git_header:
            old_path, new_path = git_header.groups()
            current = FileChange(path=new_path, old_path=old_path)
            changes.append(current)
            in_git_header = True
            continue
        if in_git_header and current is not None:
            extended = _EXTENDED_RE.match(line)
            if extended:
                side, path = extended.group(2), _unquote(extended.group(3))
                if side == "from":
                    current.old_path = path
                else:
                    current.path = path
                continue
            if line.startswith("new file mode"):
                current.new_file = True
                continue
            if line.startswith("deleted file mode"):
                current.deleted = True
                continue

        # A header is a '---' line immediately followed by a '+++' line
        next_line = lines[i + 1] if i + 1 < len(lines) else ""
        if line.startswith("--- ") and next_line.startswith("+++ "):
            old_path = _strip_prefix(line[4:], "a/")
            new_path = _strip_prefix(next_line[4:], "b/")
            deleted = new_path == "/dev/null"
            path = old_path if deleted else new_path
            if in_git_header and current is not None:
                current.path = path
                current.old_path = old_path
            else:
                current = FileChange(path=path, old_path=old_path)
                changes.append(current)
            current.new_file = current.new_file or old_path == "/dev/null"
            current.deleted = current.deleted or deleted
            in_git_header = False
        elif line.startswith("+++ ") and i > 0 and lines[i - 1].startswith("--- "):
            continue
        elif line.startswith("@@"):
            in_git_header = False
        elif current is not None and not in_git_header:
            if line.startswith("+"):
                current.added += 1
                if len(current.preview) < _PREVIEW_LINES:
                    current.preview.append(line[1:])
            elif line.startswith("-"):
                current.removed += 1
    return changes


_SECRET_RE = re.compile(r"(api[_-]?key|secret|token)\s*[:=]", re.IGNORECASE)

_CHECKS: tuple[tuple[re.Pattern[str], Severity, str], ...] = (
    (re.compile(r"\.env\b", re.IGNORECASE), Severity.HIGH, "Patch touches .env files"),
    (re.compile(r"rm\s+-rf\s+", re.IGNORECASE), Severity.HIGH, "Patch or scripts include rm -rf"),
    (re.compile(r"chmod\s+7{3}", re.IGNORECASE), Severity.MEDIUM, "chmod 777 detected"),
    (_SECRET_RE, Severity.MEDIUM, "Potential secret assignment in patch"),
)


def review_patch(diff: str) -> list[Finding]:
    """Flag risky content in a patch."""
    return [
        Finding(severity=severity, message=message)
        for pattern, severity, message in _CHECKS
        if pattern.search(diff or "")
    ]


def has_high_severity(findings: list[Finding]) -> bool:
    return any(f.severity is Severity.HIGH for f in findings)
