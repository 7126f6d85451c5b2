"""
History Stack
Linear undo/redo over grading summaries.
"""
from typing import List, Optional

from autograde.schemas import GradingSummary


class History:
    """
    Append-only log of summaries with a cursor.

    Recording after an undo truncates everything past the cursor first.
    When max_entries is set, the oldest snapshot is dropped once the log
    is full.
    """

    def __init__(self, max_entries: Optional[int] = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: List[GradingSummary] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> Optional[GradingSummary]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def reset(self, summary: Optional[GradingSummary] = None) -> None:
        """Start over, optionally with a single fresh snapshot."""
        self._entries = [summary] if summary is not None else []
        self._cursor = len(self._entries) - 1

    def record(self, summary: GradingSummary) -> None:
        del self._entries[self._cursor + 1:]
        self._entries.append(summary)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            del self._entries[0]
        self._cursor = len(self._entries) - 1

    def undo(self) -> Optional[GradingSummary]:
        """Step back one snapshot. Returns None when already at the start."""
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._entries[self._cursor]

    def redo(self) -> Optional[GradingSummary]:
        """Step forward one snapshot. Returns None when already at the tail."""
        if not self.can_redo:
            return None
        self._cursor += 1
        return self._entries[self._cursor]
