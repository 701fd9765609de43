"""Unit tests for SQLite layer."""

from datetime import date, datetime, timedelta, timezone

import pytest

from docket.database.sqlite import TaskDB
from docket.errors import IdentityConflictError
from docket.models import CalendarEvent, CalendarResource, Document, RecurrenceRule, Task, Tombstone


def test_init_db_is_repeatable(db: TaskDB) -> None:
    """init_db can run on an existing store."""
    db.init_db()
    db.insert_task(Task(id="x", content="t"))
    assert [t.id for t in db.list_tasks()] == ["x"]


def test_task_roundtrip_keeps_rule_and_dates(db: TaskDB) -> None:
    """Stored tasks come back with their rule, due date and timestamps."""
    rule = RecurrenceRule(frequency="weekly", days_of_week=[0, 3])
    task = Task(id="t1", content="Gym", due_date=date(2024, 6, 12), recurrence_rule=rule)
    db.insert_task(task)
    got = db.get_task("t1")
    assert got is not None
    assert got.recurrence_rule == rule
    assert got.due_date == date(2024, 6, 12)
    assert got.created_at == task.created_at
    assert db.get_task("missing") is None


def test_update_and_status_filter(db: TaskDB) -> None:
    """update_task persists; list_tasks filters by status."""
    task = Task(id="a", content="A")
    db.insert_task(task)
    db.insert_task(Task(id="b", content="B"))
    db.update_task(task.model_copy(update={"status": "done", "content": "A2"}))
    assert [t.content for t in db.list_tasks(status="done")] == ["A2"]
    assert [t.id for t in db.list_tasks(status="todo")] == ["b"]


def test_external_uid_unique_per_resource(db: TaskDB) -> None:
    """A second task claiming a UID in the same resource is rejected."""
    db.insert_task(Task(id="a", content="A", external_uid="u1", resource_id="r1"))
    with pytest.raises(IdentityConflictError) as excinfo:
        db.insert_task(Task(id="b", content="B", external_uid="u1", resource_id="r1"))
    assert excinfo.value.external_uid == "u1"
    # Same UID in another resource is fine
    db.insert_task(Task(id="c", content="C", external_uid="u1", resource_id="r2"))
    assert db.get_task_by_external_uid("u1", "r2").id == "c"


def test_malformed_rule_is_ignored(db: TaskDB) -> None:
    """A corrupt rule column loads as no rule."""
    db.insert_task(Task(id="a", content="A"))
    with db._connect() as conn:
        conn.execute("UPDATE tasks SET recurrence_rule = '{bad json' WHERE id = 'a'")
    assert db.get_task("a").recurrence_rule is None


def test_delete_task_removes_contexts(db: TaskDB) -> None:
    """delete_task drops the row and its context links."""
    db.insert_task(Task(id="a", content="A"))
    db.add_context("a", "doc")
    db.add_context("a", "doc")
    assert db.list_contexts("a") == ["doc"]
    assert db.delete_task("a")
    assert db.list_contexts("a") == []
    assert not db.delete_task("a")


def test_identity_map_replace_and_lookup(db: TaskDB) -> None:
    """Identity maps are replaced per document and searchable by task."""
    db.save_identity_map("doc", {"i1": "t1", "i2": "t2"})
    db.save_identity_map("other", {"i1": "t1"})
    db.save_identity_map("doc", {"i2": "t2"})
    assert db.get_identity_map("doc") == {"i2": "t2"}
    assert db.find_mappings("t1") == [("other", "i1")]
    db.drop_mappings("t2")
    assert db.get_identity_map("doc") == {}


def test_insert_task_with_document_links_and_maps(db: TaskDB) -> None:
    """A task inserted for a document gets its context and mapping in one write."""
    db.insert_task(Task(id="a", content="A"), document_id="doc", inline_id="i1")
    assert db.list_contexts("a") == ["doc"]
    assert db.get_identity_map("doc") == {"i1": "a"}

    db.insert_task(Task(id="b", content="B", external_uid="u", resource_id="r"))
    with pytest.raises(IdentityConflictError):
        db.insert_task(
            Task(id="c", content="C", external_uid="u", resource_id="r"),
            document_id="doc",
            inline_id="i2",
        )
    assert db.get_identity_map("doc") == {"i1": "a"}
    assert db.list_contexts("c") == []


def test_documents_upsert(db: TaskDB) -> None:
    """save_document inserts then overwrites."""
    db.save_document(Document(id="d", content="one"))
    db.save_document(Document(id="d", content="two"))
    assert db.get_document("d").content == "two"
    assert db.get_document("nope") is None


def test_tombstones(db: TaskDB) -> None:
    """Tombstones are appended and looked up by UID."""
    assert not db.has_tombstone("u1")
    db.insert_tombstone(Tombstone(external_uid="u1", resource_id="r1"))
    assert db.has_tombstone("u1")
    assert [t.resource_id for t in db.list_tombstones()] == ["r1"]


def test_resources_and_unmapped_tasks(db: TaskDB, resource: CalendarResource) -> None:
    """Resource CRUD and per-resource task listings."""
    db.insert_task(Task(id="a", content="A", external_uid="u", resource_id=resource.id))
    db.insert_task(Task(id="b", content="B"))
    assert [t.id for t in db.list_resource_tasks(resource.id)] == ["a"]
    assert [t.id for t in db.list_unmapped_tasks()] == ["b"]

    db.update_resource(resource.model_copy(update={"enabled": False}))
    assert db.list_resources() == []
    assert [r.id for r in db.list_resources(enabled_only=False)] == [resource.id]
    assert db.delete_resource(resource.id)
    assert db.get_resource(resource.id) is None


def test_mark_synced(db: TaskDB) -> None:
    """mark_synced stores the etag and sync time."""
    db.insert_task(Task(id="a", content="A"))
    when = datetime(2024, 6, 11, 12, tzinfo=timezone.utc)
    db.mark_synced("a", '"e1"', when)
    got = db.get_task("a")
    assert got.external_etag == '"e1"'
    assert got.last_synced_at == when


def test_calendar_events_cache(db: TaskDB) -> None:
    """Event cache is replaced wholesale per resource."""
    start = datetime(2024, 6, 11, 9, tzinfo=timezone.utc)
    db.replace_calendar_events(
        "r1",
        [CalendarEvent(uid="e1", resource_id="r1", summary="Standup", start=start, end=start + timedelta(minutes=15))],
    )
    db.replace_calendar_events("r1", [CalendarEvent(uid="e2", resource_id="r1", summary="Retro")])
    events = db.list_calendar_events("r1")
    assert [e.uid for e in events] == ["e2"]
    assert db.list_calendar_events("r2") == []
