"""JournalStore: append-only undo journal persisted as a JSON array."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections import Counter
from pathlib import Path

from actionguard.core.config import project_dir
from actionguard.errors import JournalWriteFailure
from actionguard.types.journal import JournalAction, JournalEntry

logger = logging.getLogger(__name__)

JOURNAL_FILE = "journal.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


class JournalStore:
    """Ordered log of apply/revert actions for one project root.

    Reads are best-effort: a missing or corrupt file is an empty journal.
    Writes replace the whole file atomically and raise
    :class:`JournalWriteFailure` on any error.
    """

    def __init__(self, root: str | Path, *, path: Path | None = None) -> None:
        self._root = Path(root)
        self._path = path or project_dir(self._root) / JOURNAL_FILE

    @property
    def path(self) -> Path:
        return self._path

    def entries(self) -> list[JournalEntry]:
        """Load the journal, oldest first."""
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable journal %s, treating as empty: %s", self._path, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Journal %s is not a JSON array, treating as empty", self._path)
            return []

        entries: list[JournalEntry] = []
        for item in raw:
            try:
                entries.append(JournalEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed journal entry %r: %s", item, exc)
        return entries

    def append(self, action: JournalAction, diff: str) -> JournalEntry:
        """Append one entry and persist the whole journal."""
        entries = self.entries()
        at = _now_ms()
        if entries and at < entries[-1].at:
            # Keep the journal ordered even if the wall clock went backwards
            at = entries[-1].at
        entry = JournalEntry(action=action, diff=diff, at=at)
        entries.append(entry)
        self._write(entries, entry)
        return entry

    def _write(self, entries: list[JournalEntry], entry: JournalEntry) -> None:
        payload = json.dumps([e.to_dict() for e in entries], indent=2)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self._path.parent,
                prefix=".journal-", suffix=".tmp", delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            raise JournalWriteFailure(
                f"Could not record {entry.action.value} in journal {self._path}: {exc}. "
                "The change was made but undo history is incomplete.",
                entry=entry,
            ) from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    def unpaired_applies(self) -> list[JournalEntry]:
        """Applies not yet matched by a later revert of the same diff, newest first.

        Pairing is LIFO: each revert cancels the newest earlier apply of the
        same diff.
        """
        pending_reverts: Counter[str] = Counter()
        unpaired: list[JournalEntry] = []
        for entry in reversed(self.entries()):
            if entry.action is JournalAction.REVERT:
                pending_reverts[entry.diff] += 1
            elif pending_reverts[entry.diff] > 0:
                pending_reverts[entry.diff] -= 1
            else:
                unpaired.append(entry)
        return unpaired

    def last_unpaired_apply(self) -> JournalEntry | None:
        unpaired = self.unpaired_applies()
        return unpaired[0] if unpaired else None
