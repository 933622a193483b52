"""Diff types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NewType

# Raw, possibly fenced or sentinel-wrapped, diff text from the model.
UnifiedDiff = str

# Only actionguard.patch.sanitize.sanitize() produces these.
SanitizedDiff = NewType("SanitizedDiff", str)


@dataclass(frozen=True, slots=True)
class DryRunResult:
    """Outcome of a check-only apply."""

    ok: bool
    conflicts: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FileChange:
    """Per-file summary of a unified diff.

    ``old_path`` is set when the diff renames or copies a file.
    """

    path: str
    added: int = 0
    removed: int = 0
    new_file: bool = False
    deleted: bool = False
    old_path: str | None = None
    preview: list[str] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        """Every path the change reads or writes, source first."""
        out = [self.old_path] if self.old_path and self.old_path != self.path else []
        return [p for p in (*out, self.path) if p != "/dev/null"]


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class Finding:
    """A security review finding for a patch."""

    severity: Severity
    message: str
