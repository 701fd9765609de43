"""Relational wrapper for SQLite (tasks, identity maps, tombstones, resources)."""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from docket.errors import IdentityConflictError, StorageError
from docket.models import (
    CalendarEvent,
    CalendarResource,
    Document,
    RecurrenceRule,
    Task,
    Tombstone,
)

logger = logging.getLogger(__name__)


def _iso(dt: Optional[datetime | date]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string, returning None for invalid input."""
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(s: Optional[str]) -> Optional[date]:
    """Parse ISO date string (a datetime string keeps only its date part)."""
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


class TaskDB:
    """SQLite wrapper for the task store. All I/O stays in this module.

    Every public method runs in its own transaction; ``sqlite3`` failures
    surface as :class:`StorageError`.
    """

    def __init__(self, db_path: Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open task store {self._path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Task store failure: {e}") from e
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'todo',
                    due_date DATE,
                    recurrence_rule TEXT,
                    external_uid TEXT,
                    resource_id TEXT,
                    external_etag TEXT,
                    last_synced_at DATETIME,
                    created_at DATETIME NOT NULL,
                    updated_at DATETIME NOT NULL
                )
                """
            )
            # One task per external UID within a resource
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_external "
                "ON tasks(COALESCE(resource_id, ''), external_uid) "
                "WHERE external_uid IS NOT NULL"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS task_contexts (
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    document_id TEXT NOT NULL,
                    created_at DATETIME NOT NULL,
                    PRIMARY KEY (task_id, document_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS identity_map (
                    document_id TEXT NOT NULL,
                    inline_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    PRIMARY KEY (document_id, inline_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_identity_task ON identity_map(task_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    updated_at DATETIME NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tombstones (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_uid TEXT NOT NULL,
                    resource_id TEXT,
                    deleted_at DATETIME NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tombstones_uid ON tombstones(external_uid)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS calendar_resources (
                    id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    server_url TEXT NOT NULL,
                    username TEXT,
                    password TEXT,
                    calendar_url TEXT,
                    kind TEXT NOT NULL DEFAULT 'task_list',
                    enabled INTEGER NOT NULL DEFAULT 1,
                    export_local_tasks INTEGER NOT NULL DEFAULT 0,
                    created_at DATETIME NOT NULL,
                    updated_at DATETIME NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS calendar_events (
                    resource_id TEXT NOT NULL,
                    uid TEXT NOT NULL,
                    summary TEXT,
                    start_at DATETIME,
                    end_at DATETIME,
                    all_day INTEGER NOT NULL DEFAULT 0,
                    last_modified DATETIME,
                    PRIMARY KEY (resource_id, uid)
                )
                """
            )

    # ---- Tasks ----

    def insert_task(
        self,
        task: Task,
        document_id: Optional[str] = None,
        inline_id: Optional[str] = None,
    ) -> None:
        """Insert a new task. Raises IdentityConflictError on a duplicate UID.

        With document_id the context link (and, with inline_id, the identity-map
        entry) is written in the same transaction as the task.
        """
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tasks (id, content, status, due_date, recurrence_rule,
                                       external_uid, resource_id, external_etag,
                                       last_synced_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.id,
                        task.content,
                        task.status,
                        _iso(task.due_date),
                        _dump_rule(task.recurrence_rule),
                        task.external_uid,
                        task.resource_id,
                        task.external_etag,
                        _iso(task.last_synced_at),
                        _iso(task.created_at),
                        _iso(task.updated_at),
                    ),
                )
                if document_id is not None:
                    conn.execute(
                        "INSERT OR IGNORE INTO task_contexts (task_id, document_id, created_at) "
                        "VALUES (?, ?, ?)",
                        (task.id, document_id, _iso(task.created_at)),
                    )
                if document_id is not None and inline_id is not None:
                    conn.execute(
                        "INSERT OR REPLACE INTO identity_map (document_id, inline_id, task_id) "
                        "VALUES (?, ?, ?)",
                        (document_id, inline_id, task.id),
                    )
        except StorageError as e:
            conflict = _identity_conflict(task, e)
            if conflict is not None:
                raise conflict from e
            raise

    def get_task(self, task_id: str) -> Optional[Task]:
        """Return one task by id or None."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def get_tasks(self, task_ids: list[str]) -> dict[str, Task]:
        """Return the existing tasks among task_ids, keyed by id."""
        if not task_ids:
            return {}
        placeholders = ",".join("?" for _ in task_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE id IN ({placeholders})", task_ids
            ).fetchall()
        return {row["id"]: _row_to_task(row) for row in rows}

    def get_task_by_external_uid(
        self, external_uid: str, resource_id: Optional[str] = None
    ) -> Optional[Task]:
        """Return the task carrying external_uid (scoped to resource_id if given)."""
        with self._connect() as conn:
            if resource_id is not None:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE external_uid = ? AND resource_id = ?",
                    (external_uid, resource_id),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE external_uid = ? "
                    "ORDER BY created_at ASC LIMIT 1",
                    (external_uid,),
                ).fetchone()
        return _row_to_task(row) if row else None

    def update_task(self, task: Task) -> None:
        """Update an existing task by id."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE tasks SET content=?, status=?, due_date=?, recurrence_rule=?,
                                     external_uid=?, resource_id=?, external_etag=?,
                                     last_synced_at=?, created_at=?, updated_at=?
                    WHERE id = ?
                    """,
                    (
                        task.content,
                        task.status,
                        _iso(task.due_date),
                        _dump_rule(task.recurrence_rule),
                        task.external_uid,
                        task.resource_id,
                        task.external_etag,
                        _iso(task.last_synced_at),
                        _iso(task.created_at),
                        _iso(task.updated_at),
                        task.id,
                    ),
                )
        except StorageError as e:
            conflict = _identity_conflict(task, e)
            if conflict is not None:
                raise conflict from e
            raise

    def delete_task(self, task_id: str) -> bool:
        """Delete a task and its context links. Returns False if it did not exist."""
        with self._connect() as conn:
            conn.execute("DELETE FROM task_contexts WHERE task_id = ?", (task_id,))
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def list_tasks(self, status: Optional[str] = None) -> list[Task]:
        """Return tasks (optionally filtered by status), oldest first."""
        with self._connect() as conn:
            if status is not None:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY created_at ASC",
                    (status,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY created_at ASC"
                ).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_resource_tasks(self, resource_id: str) -> list[Task]:
        """Return tasks owned by a calendar resource."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE resource_id = ? ORDER BY created_at ASC",
                (resource_id,),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_unmapped_tasks(self) -> list[Task]:
        """Return tasks that have no external calendar identity yet."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE external_uid IS NULL AND content != '' "
                "ORDER BY created_at ASC"
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def mark_synced(
        self, task_id: str, etag: Optional[str], synced_at: datetime
    ) -> None:
        """Record a successful exchange with the server for one task."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET external_etag = ?, last_synced_at = ? WHERE id = ?",
                (etag, _iso(synced_at), task_id),
            )

    # ---- Contexts (task -> document links) ----

    def add_context(self, task_id: str, document_id: str) -> None:
        """Link a task to a document (idempotent)."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO task_contexts (task_id, document_id, created_at) "
                "VALUES (?, ?, ?)",
                (task_id, document_id, _iso(datetime.now(timezone.utc))),
            )

    def list_contexts(self, task_id: str) -> list[str]:
        """Return the ids of documents a task is linked to."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT document_id FROM task_contexts WHERE task_id = ? "
                "ORDER BY created_at ASC",
                (task_id,),
            ).fetchall()
        return [r["document_id"] for r in rows]

    # ---- Identity maps ----

    def get_identity_map(self, document_id: str) -> dict[str, str]:
        """Return the inline-id -> task-id map of one document."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT inline_id, task_id FROM identity_map WHERE document_id = ?",
                (document_id,),
            ).fetchall()
        return {r["inline_id"]: r["task_id"] for r in rows}

    def save_identity_map(self, document_id: str, mapping: dict[str, str]) -> None:
        """Replace the identity map of one document."""
        with self._connect() as conn:
            conn.execute("DELETE FROM identity_map WHERE document_id = ?", (document_id,))
            conn.executemany(
                "INSERT INTO identity_map (document_id, inline_id, task_id) "
                "VALUES (?, ?, ?)",
                [(document_id, inline_id, tid) for inline_id, tid in mapping.items()],
            )

    def find_mappings(self, task_id: str) -> list[tuple[str, str]]:
        """Return (document_id, inline_id) pairs that point at a task."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT document_id, inline_id FROM identity_map WHERE task_id = ?",
                (task_id,),
            ).fetchall()
        return [(r["document_id"], r["inline_id"]) for r in rows]

    def drop_mappings(self, task_id: str) -> None:
        """Remove every identity-map entry that points at a task."""
        with self._connect() as conn:
            conn.execute("DELETE FROM identity_map WHERE task_id = ?", (task_id,))

    # ---- Documents ----

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        if not row:
            return None
        return Document(
            id=row["id"],
            content=row["content"],
            updated_at=_parse_dt(row["updated_at"]) or datetime.now(timezone.utc),
        )

    def save_document(self, document: Document) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO documents (id, content, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET content = excluded.content, "
                "updated_at = excluded.updated_at",
                (document.id, document.content, _iso(document.updated_at)),
            )

    # ---- Tombstones ----

    def insert_tombstone(self, tombstone: Tombstone) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO tombstones (external_uid, resource_id, deleted_at) "
                "VALUES (?, ?, ?)",
                (tombstone.external_uid, tombstone.resource_id, _iso(tombstone.deleted_at)),
            )

    def has_tombstone(self, external_uid: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM tombstones WHERE external_uid = ? LIMIT 1",
                (external_uid,),
            ).fetchone()
        return row is not None

    def list_tombstones(self) -> list[Tombstone]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tombstones ORDER BY deleted_at ASC, id ASC"
            ).fetchall()
        return [
            Tombstone(
                external_uid=r["external_uid"],
                resource_id=r["resource_id"],
                deleted_at=_parse_dt(r["deleted_at"]) or datetime.now(timezone.utc),
            )
            for r in rows
        ]

    # ---- Calendar resources ----

    def insert_resource(self, resource: CalendarResource) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO calendar_resources (id, display_name, server_url, username,
                                                password, calendar_url, kind, enabled,
                                                export_local_tasks, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    resource.id,
                    resource.display_name,
                    resource.server_url,
                    resource.username,
                    resource.password,
                    resource.calendar_url,
                    resource.kind,
                    int(resource.enabled),
                    int(resource.export_local_tasks),
                    _iso(resource.created_at),
                    _iso(resource.updated_at),
                ),
            )

    def update_resource(self, resource: CalendarResource) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE calendar_resources SET display_name=?, server_url=?, username=?,
                       password=?, calendar_url=?, kind=?, enabled=?,
                       export_local_tasks=?, updated_at=?
                WHERE id = ?
                """,
                (
                    resource.display_name,
                    resource.server_url,
                    resource.username,
                    resource.password,
                    resource.calendar_url,
                    resource.kind,
                    int(resource.enabled),
                    int(resource.export_local_tasks),
                    _iso(resource.updated_at),
                    resource.id,
                ),
            )

    def get_resource(self, resource_id: str) -> Optional[CalendarResource]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_resources WHERE id = ?", (resource_id,)
            ).fetchone()
        return _row_to_resource(row) if row else None

    def list_resources(self, enabled_only: bool = True) -> list[CalendarResource]:
        with self._connect() as conn:
            if enabled_only:
                rows = conn.execute(
                    "SELECT * FROM calendar_resources WHERE enabled = 1 "
                    "ORDER BY created_at ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM calendar_resources ORDER BY created_at ASC"
                ).fetchall()
        return [_row_to_resource(r) for r in rows]

    def delete_resource(self, resource_id: str) -> bool:
        """Delete a resource and its cached events. Its tasks stay in the store."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM calendar_events WHERE resource_id = ?", (resource_id,)
            )
            cursor = conn.execute(
                "DELETE FROM calendar_resources WHERE id = ?", (resource_id,)
            )
        return cursor.rowcount > 0

    # ---- Calendar events (read-only cache) ----

    def replace_calendar_events(
        self, resource_id: str, events: list[CalendarEvent]
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM calendar_events WHERE resource_id = ?", (resource_id,)
            )
            conn.executemany(
                """
                INSERT OR REPLACE INTO calendar_events
                    (resource_id, uid, summary, start_at, end_at, all_day, last_modified)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        resource_id,
                        ev.uid,
                        ev.summary,
                        _iso(ev.start),
                        _iso(ev.end),
                        int(ev.all_day),
                        _iso(ev.last_modified),
                    )
                    for ev in events
                ],
            )

    def list_calendar_events(
        self, resource_id: Optional[str] = None
    ) -> list[CalendarEvent]:
        with self._connect() as conn:
            if resource_id is not None:
                rows = conn.execute(
                    "SELECT * FROM calendar_events WHERE resource_id = ? "
                    "ORDER BY start_at ASC",
                    (resource_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM calendar_events ORDER BY start_at ASC"
                ).fetchall()
        return [
            CalendarEvent(
                uid=r["uid"],
                resource_id=r["resource_id"],
                summary=r["summary"] or "",
                start=_parse_dt(r["start_at"]),
                end=_parse_dt(r["end_at"]),
                all_day=bool(r["all_day"]),
                last_modified=_parse_dt(r["last_modified"]),
            )
            for r in rows
        ]


def _dump_rule(rule: Optional[RecurrenceRule]) -> Optional[str]:
    return json.dumps(rule.model_dump()) if rule else None


def _load_rule(raw: Optional[str], task_id: str) -> Optional[RecurrenceRule]:
    """Parse a stored rule; malformed rules are logged and treated as absent."""
    if not raw:
        return None
    try:
        return RecurrenceRule.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring malformed recurrence rule on task %s: %s", task_id, e)
        return None


def _identity_conflict(task: Task, error: StorageError) -> Optional[IdentityConflictError]:
    """Recognize a unique-UID violation behind a StorageError."""
    cause = error.__cause__
    if (
        task.external_uid
        and isinstance(cause, sqlite3.IntegrityError)
        and "idx_tasks_external" in str(cause)
    ):
        return IdentityConflictError(task.external_uid, task.resource_id)
    return None


def _row_to_task(row: sqlite3.Row) -> Task:
    """Convert database row to Task, handling malformed data gracefully."""
    now = datetime.now(timezone.utc)
    return Task(
        id=row["id"],
        content=row["content"],
        status="done" if row["status"] == "done" else "todo",
        due_date=_parse_date(row["due_date"]),
        recurrence_rule=_load_rule(row["recurrence_rule"], row["id"]),
        external_uid=row["external_uid"],
        resource_id=row["resource_id"],
        external_etag=row["external_etag"],
        last_synced_at=_parse_dt(row["last_synced_at"]),
        created_at=_parse_dt(row["created_at"]) or now,
        updated_at=_parse_dt(row["updated_at"]) or now,
    )


def _row_to_resource(row: sqlite3.Row) -> CalendarResource:
    now = datetime.now(timezone.utc)
    return CalendarResource(
        id=row["id"],
        display_name=row["display_name"],
        server_url=row["server_url"],
        username=row["username"] or "",
        password=row["password"] or "",
        calendar_url=row["calendar_url"],
        kind="event_calendar" if row["kind"] == "event_calendar" else "task_list",
        enabled=bool(row["enabled"]),
        export_local_tasks=bool(row["export_local_tasks"]),
        created_at=_parse_dt(row["created_at"]) or now,
        updated_at=_parse_dt(row["updated_at"]) or now,
    )
