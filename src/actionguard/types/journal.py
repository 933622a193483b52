"""Undo journal entry types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class JournalAction(Enum):
    APPLY = "apply"
    REVERT = "revert"


@dataclass(frozen=True, slots=True)
class JournalEntry:
    """One recorded apply or revert. ``at`` is Unix time in milliseconds."""

    action: JournalAction
    diff: str
    at: int

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "diff": self.diff, "at": self.at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JournalEntry:
        return cls(
            action=JournalAction(data["action"]),
            diff=str(data["diff"]),
            at=int(data.get("at") or 0),
        )
