"""Unit tests for the tombstone ledger."""

from docket.core.services import TaskService
from docket.core.tombstones import TombstoneLedger


def test_record_and_lookup(ledger: TombstoneLedger) -> None:
    """Recorded UIDs are reported as tombstoned; others are not."""
    tombstone = ledger.record("uid-1", "res-1")
    assert tombstone.external_uid == "uid-1"
    assert ledger.is_tombstoned("uid-1")
    assert not ledger.is_tombstoned("uid-2")


def test_entries_are_append_only(ledger: TombstoneLedger) -> None:
    """Recording the same UID twice keeps both entries."""
    ledger.record("uid-1")
    ledger.record("uid-1", "res-2")
    entries = ledger.entries()
    assert [e.external_uid for e in entries] == ["uid-1", "uid-1"]
    assert entries[1].resource_id == "res-2"


def test_deleting_local_task_leaves_no_tombstone(
    task_service: TaskService, ledger: TombstoneLedger
) -> None:
    """Tasks that never touched a calendar are deleted without a trace."""
    task = task_service.create_task("Local only")
    task_service.delete_task(task.id)
    assert ledger.entries() == []


def test_deleting_synced_task_tombstones_uid(
    task_service: TaskService, ledger: TombstoneLedger, resource
) -> None:
    """Deleting a calendar-sourced task records its UID."""
    task = task_service.create_task("From calendar", external_uid="cal-1", resource_id=resource.id)
    task_service.delete_task(task.id)
    assert ledger.is_tombstoned("cal-1")
    assert ledger.entries()[0].resource_id == resource.id
