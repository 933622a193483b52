"""Diff sanitizing, inspection and reversible application."""

from actionguard.patch.applier import PatchApplier
from actionguard.patch.git import Git
from actionguard.patch.inspect import diff_files, extract_patch, review_patch
from actionguard.patch.journal import JournalStore
from actionguard.patch.sanitize import sanitize

__all__ = [
    "Git",
    "JournalStore",
    "PatchApplier",
    "diff_files",
    "extract_patch",
    "review_patch",
    "sanitize",
]
