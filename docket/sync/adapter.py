"""Bidirectional task synchronization with CalDAV resources.

One pass over a resource walks DISCOVERING -> PULLING -> RECONCILING ->
PUSHING and returns to IDLE. Any failure moves the resource to FAILED, is
reported, and the resource goes back to IDLE so the next pass can run.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from docket.core.services.tasks import TaskService
from docket.core.tombstones import TombstoneLedger
from docket.database.sqlite import TaskDB
from docket.errors import DocketError, IdentityConflictError, StorageError, SyncError
from docket.models import CalendarResource, RemoteItem, SyncReport, Task

from .caldav import CalDAVClient
from .ical import build_todo

logger = logging.getLogger(__name__)

ClientFactory = Callable[[CalendarResource], CalDAVClient]
CompletionHook = Callable[[str, bool], None]


class SyncState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    PULLING = "pulling"
    RECONCILING = "reconciling"
    PUSHING = "pushing"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aborted(abort: Optional[threading.Event]) -> bool:
    return abort is not None and abort.is_set()


def local_changed(task: Task) -> bool:
    """True when the task was edited after its last exchange with the server."""
    return task.last_synced_at is None or task.updated_at > task.last_synced_at


def remote_changes(task: Task, item: RemoteItem) -> dict[str, Any]:
    """Fields where the remote item disagrees with the local task."""
    changes: dict[str, Any] = {}
    if item.summary and item.summary != task.content:
        changes["content"] = item.summary
    if item.due != task.due_date:
        changes["due_date"] = item.due
    if item.completed != task.completed:
        changes["status"] = "done" if item.completed else "todo"
    return changes


class CalendarSyncAdapter:
    """Runs sync passes; at most one in flight per resource."""

    def __init__(
        self,
        db: TaskDB,
        tasks: TaskService,
        tombstones: TombstoneLedger,
        client_factory: ClientFactory,
        delete_tombstoned_remote: bool = True,
        on_completion_change: Optional[CompletionHook] = None,
    ) -> None:
        self._db = db
        self._tasks = tasks
        self._tombstones = tombstones
        self._client_factory = client_factory
        self._delete_tombstoned_remote = delete_tombstoned_remote
        self._on_completion_change = on_completion_change
        self._states: dict[str, SyncState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def state(self, resource_id: str) -> SyncState:
        return self._states.get(resource_id, SyncState.IDLE)

    def _set_state(self, resource_id: str, state: SyncState) -> None:
        self._states[resource_id] = state
        logger.debug("Resource %s -> %s", resource_id, state.value)

    def _lock_for(self, resource_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = self._locks[resource_id] = threading.Lock()
            return lock

    def sync_all(self, abort: Optional[threading.Event] = None) -> SyncReport:
        """Sync every enabled resource; one failure never stops the others."""
        try:
            resources = self._db.list_resources(enabled_only=True)
        except StorageError as e:
            logger.error("Sync skipped, task store unavailable: %s", e)
            return SyncReport(error=str(e))
        report = SyncReport()
        for resource in resources:
            if _aborted(abort):
                break
            report.merge(self.sync_resource(resource, abort))
        return report

    def sync_resource(
        self, resource: CalendarResource, abort: Optional[threading.Event] = None
    ) -> SyncReport:
        report = SyncReport()
        lock = self._lock_for(resource.id)
        if not lock.acquire(blocking=False):
            logger.info("Sync of %s already running; skipping", resource.display_name)
            report.busy.append(resource.id)
            return report
        try:
            self._run(resource, abort, report)
        except DocketError as e:
            self._set_state(resource.id, SyncState.FAILED)
            logger.error("Sync of %s failed: %s", resource.display_name, e)
            report.errors.append(f"{resource.display_name}: {e}")
        except Exception as e:
            # Anything unexpected fails this resource only
            self._set_state(resource.id, SyncState.FAILED)
            logger.exception("Sync of %s crashed", resource.display_name)
            report.errors.append(f"{resource.display_name}: {e}")
        finally:
            self._set_state(resource.id, SyncState.IDLE)
            lock.release()
        return report

    def _run(
        self,
        resource: CalendarResource,
        abort: Optional[threading.Event],
        report: SyncReport,
    ) -> None:
        with self._client_factory(resource) as client:
            self._set_state(resource.id, SyncState.DISCOVERING)
            calendar_url = self._resolve_collection(client, resource)
            if _aborted(abort):
                return

            self._set_state(resource.id, SyncState.PULLING)
            if resource.kind == "event_calendar":
                events = client.fetch_events(calendar_url, resource.id)
                self._set_state(resource.id, SyncState.RECONCILING)
                self._db.replace_calendar_events(resource.id, events)
                report.pulled += len(events)
                return
            remote = client.fetch_todos(calendar_url)
            if _aborted(abort):
                return

            self._set_state(resource.id, SyncState.RECONCILING)
            doomed: list[RemoteItem] = []
            seen: dict[str, RemoteItem] = {}
            for item in remote:
                if self._tombstones.is_tombstoned(item.uid):
                    report.skipped_tombstoned += 1
                    if self._delete_tombstoned_remote:
                        doomed.append(item)
                    continue
                seen[item.uid] = item
                self._apply_remote(resource, item, report)

            self._set_state(resource.id, SyncState.PUSHING)
            self._push(client, resource, calendar_url, seen, doomed, abort, report)

    def _resolve_collection(self, client: CalDAVClient, resource: CalendarResource) -> str:
        if resource.calendar_url:
            return resource.calendar_url
        component = "VEVENT" if resource.kind == "event_calendar" else "VTODO"
        for calendar in client.discover():
            if calendar.supports(component):
                self._db.update_resource(
                    resource.model_copy(
                        update={"calendar_url": calendar.url, "updated_at": _now()}
                    )
                )
                logger.info("Using collection %s for %s", calendar.url, resource.display_name)
                return calendar.url
        raise SyncError(f"No {component} collection found at {resource.server_url}")

    def _apply_remote(
        self, resource: CalendarResource, item: RemoteItem, report: SyncReport
    ) -> None:
        task = self._db.get_task_by_external_uid(item.uid, resource.id)
        if task is None:
            if not item.summary:
                logger.debug("Skipping remote item %s without summary", item.uid)
                return
            try:
                task = self._tasks.create_task(
                    item.summary,
                    due_date=item.due,
                    external_uid=item.uid,
                    resource_id=resource.id,
                )
            except IdentityConflictError as e:
                logger.warning("Rejected remote item: %s", e)
                return
            if item.completed:
                task = self._tasks.complete_task(task.id).task
            self._db.mark_synced(task.id, item.etag, _now())
            report.pulled += 1
            return

        changes = remote_changes(task, item)
        remote_moved = task.external_etag is None or task.external_etag != item.etag
        if not changes:
            if remote_moved:
                self._db.mark_synced(task.id, item.etag, _now())
            return
        if not remote_moved:
            # Only the local side moved; PUSHING sends it
            return
        if local_changed(task) and not self._remote_is_newer(task, item):
            logger.info("Conflict on %s: local edit is newer, keeping it", item.uid)
            return

        before = task.completed
        task = self._tasks.apply_changes(task, changes)
        self._db.mark_synced(task.id, item.etag, _now())
        report.pulled += 1
        if task.completed != before and self._on_completion_change is not None:
            self._on_completion_change(task.id, task.completed)

    @staticmethod
    def _remote_is_newer(task: Task, item: RemoteItem) -> bool:
        # A remote item without a timestamp loses the tie
        return item.last_modified is not None and item.last_modified > task.updated_at

    def _push(
        self,
        client: CalDAVClient,
        resource: CalendarResource,
        calendar_url: str,
        seen: dict[str, RemoteItem],
        doomed: list[RemoteItem],
        abort: Optional[threading.Event],
        report: SyncReport,
    ) -> None:
        for item in doomed:
            if _aborted(abort):
                return
            try:
                client.delete_item(item.href or client.item_url(calendar_url, item.uid))
                report.deleted_remote += 1
            except SyncError as e:
                logger.warning("Remote delete of %s failed: %s", item.uid, e)
                report.errors.append(f"{resource.display_name}: {e}")

        for task in self._db.list_resource_tasks(resource.id):
            if not task.external_uid or not local_changed(task):
                continue
            if _aborted(abort):
                return
            remote = seen.get(task.external_uid)
            url = remote.href if remote and remote.href else client.item_url(
                calendar_url, task.external_uid
            )
            etag = remote.etag if remote else task.external_etag
            self._put(client, resource, task, url, etag, report)

        if not resource.export_local_tasks:
            return
        for task in self._db.list_unmapped_tasks():
            if _aborted(abort):
                return
            claimed = task.model_copy(
                update={"external_uid": str(uuid.uuid4()), "resource_id": resource.id}
            )
            try:
                self._db.update_task(claimed)
            except IdentityConflictError as e:
                logger.warning("Cannot export task %s: %s", task.id, e)
                continue
            url = client.item_url(calendar_url, claimed.external_uid)
            self._put(client, resource, claimed, url, None, report)

    def _put(
        self,
        client: CalDAVClient,
        resource: CalendarResource,
        task: Task,
        url: str,
        etag: Optional[str],
        report: SyncReport,
    ) -> None:
        try:
            new_etag = client.put_item(url, build_todo(task, task.external_uid or ""), etag)
        except SyncError as e:
            logger.warning("Push of task %s failed: %s", task.id, e)
            report.errors.append(f"{resource.display_name}: {e}")
            return
        self._db.mark_synced(task.id, new_etag, _now())
        report.pushed += 1
