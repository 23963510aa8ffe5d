"""
Undo ledger for file mutations made by the tool dispatcher.

Entries are pushed before each mutation and popped most-recent-first by the
undo command. Capacity is bounded; the oldest entry is evicted first.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from pathlib import Path

from .models import Change, UndoOutcome

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 50


class UnrecordableStateError(ValueError):
    """An existing file whose content cannot be captured for undo."""


def capture_before_state(file_path: str | Path) -> str | None:
    """
    Current file content, or None when the file does not exist.

    Raises UnrecordableStateError for a file that exists but is not UTF-8
    text or cannot be read, so it is never mistaken for an absent one.
    """
    path = Path(file_path)
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not capture prior content of %s: %s", path, e)
        reason = "not a UTF-8 text file" if isinstance(e, UnicodeDecodeError) else str(e)
        raise UnrecordableStateError(f"cannot record prior content for undo ({reason})") from e


class UndoLedger:
    """
    Bounded, lock-protected FIFO of ``Change`` entries.

    Ledger order is mutation order; every push and pop holds the lock so a
    concurrent caller can never interleave entries.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: deque[Change] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def push(self, change: Change) -> None:
        with self._lock:
            if len(self._entries) == self.max_entries:
                evicted = self._entries[0]
                logger.debug("Undo ledger full, evicting %s %s", evicted.type, evicted.file_path)
            self._entries.append(change)

    def peek(self) -> Change | None:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def entries(self) -> list[Change]:
        """Snapshot, oldest first."""
        with self._lock:
            return list(self._entries)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def pop_and_revert(self) -> UndoOutcome:
        """Revert the most recent change and drop it from the ledger."""
        with self._lock:
            if not self._entries:
                return UndoOutcome(success=False, message="Nothing to undo.")
            change = self._entries.pop()
            try:
                outcome = _revert(change)
            except OSError as e:
                logger.error("Undo of %s %s failed: %s", change.type, change.file_path, e)
                return UndoOutcome(success=False, message=f"Error: {e}")

        logger.info("← Undo: %s", outcome.message)
        return outcome


def _revert(change: Change) -> UndoOutcome:
    path = Path(change.file_path)

    if change.type == "write":
        if change.previous_content is None:
            # newly created file
            path.unlink(missing_ok=True)
            return UndoOutcome(success=True, message=f"Deleted {change.file_path} (was newly created)")
        path.write_text(change.previous_content, encoding="utf-8")
        return UndoOutcome(success=True, message=f"Restored {change.file_path}")

    if change.type == "edit":
        if change.previous_content is None:
            return UndoOutcome(success=False, message="Cannot undo edit: no previous content recorded.")
        path.write_text(change.previous_content, encoding="utf-8")
        return UndoOutcome(success=True, message=f"Reverted edit of {change.file_path}")

    if change.previous_content is None:
        return UndoOutcome(success=False, message="Cannot restore deleted file: no saved content.")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(change.previous_content, encoding="utf-8")
    return UndoOutcome(success=True, message=f"Restored {change.file_path}")
