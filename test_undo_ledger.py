#!/usr/bin/env python3
"""
Tests for the bounded undo ledger.
"""

import pytest

from termagent.chat.models import Change
from termagent.chat.undo import UndoLedger, UnrecordableStateError, capture_before_state


def _change(path, change_type="write", previous=None, new="x"):
    return Change(type=change_type, file_path=str(path), previous_content=previous, new_content=new)


def test_capacity_evicts_oldest_entry():
    ledger = UndoLedger(max_entries=50)
    for i in range(51):
        ledger.push(_change(f"file_{i}.txt"))

    entries = ledger.entries()
    assert ledger.size() == 50
    assert entries[0].file_path == "file_1.txt"
    assert entries[-1].file_path == "file_50.txt"


def test_undo_pops_most_recent_first(tmp_path):
    first, second = tmp_path / "one.txt", tmp_path / "two.txt"
    first.write_text("1")
    second.write_text("2")

    ledger = UndoLedger()
    ledger.push(_change(first, previous=None))
    ledger.push(_change(second, change_type="edit", previous="old two"))

    outcome = ledger.pop_and_revert()
    assert outcome.success
    assert second.read_text() == "old two"
    assert first.exists()

    ledger.pop_and_revert()
    assert not first.exists()
    assert ledger.size() == 0


def test_empty_ledger_reports_nothing_to_undo():
    outcome = UndoLedger().pop_and_revert()
    assert not outcome.success
    assert outcome.message == "Nothing to undo."


def test_revert_delete_recreates_parent_directories(tmp_path):
    target = tmp_path / "a" / "b" / "c.txt"
    ledger = UndoLedger()
    ledger.push(_change(target, change_type="delete", previous="restored", new=None))

    assert ledger.pop_and_revert().success
    assert target.read_text() == "restored"


def test_edit_without_previous_content_cannot_be_reverted(tmp_path):
    ledger = UndoLedger()
    ledger.push(_change(tmp_path / "x.txt", change_type="edit", previous=None))

    outcome = ledger.pop_and_revert()
    assert not outcome.success
    assert ledger.size() == 0


def test_capture_before_state(tmp_path):
    target = tmp_path / "f.txt"
    assert capture_before_state(target) is None
    target.write_text("content")
    assert capture_before_state(target) == "content"
    assert capture_before_state(tmp_path) is None


def test_capture_refuses_existing_file_it_cannot_decode(tmp_path):
    target = tmp_path / "latin1.txt"
    target.write_bytes(b"caf\xe9")

    with pytest.raises(UnrecordableStateError, match="not a UTF-8 text file"):
        capture_before_state(target)


def test_clear_and_peek():
    ledger = UndoLedger(max_entries=3)
    assert ledger.peek() is None
    ledger.push(_change("a"))
    ledger.push(_change("b"))
    assert ledger.peek().file_path == "b"
    ledger.clear()
    assert ledger.size() == 0
