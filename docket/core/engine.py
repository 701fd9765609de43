"""Main workflow: Document text -> Tasks -> Calendars."""

import logging
import threading
import uuid
from pathlib import Path
from typing import Optional

from docket.config import get_settings
from docket.core.services import DocumentService, TaskService
from docket.core.tombstones import TombstoneLedger
from docket.database.sqlite import TaskDB
from docket.errors import ResourceNotFoundError, StorageError
from docket.models import (
    CalendarEvent,
    CalendarResource,
    CompletionResult,
    DiscoveredCalendar,
    ReconcileResult,
    RecurrenceRule,
    ResourceKind,
    SyncReport,
    Task,
)
from docket.sync.adapter import CalendarSyncAdapter, ClientFactory
from docket.sync.caldav import CalDAVClient

logger = logging.getLogger(__name__)

Credentials = tuple[str, str]


class Engine:
    """Orchestrates reconciliation, task transitions and calendar sync. Depends on Config + DB."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        settings = get_settings()
        self._settings = settings
        self._db = TaskDB(db_path or settings.db_path)
        try:
            self._db.init_db()
        except StorageError as e:
            # Operations report the failure in their results
            logger.error("Task store unavailable: %s", e)
        self._tombstones = TombstoneLedger(self._db)
        self._tasks = TaskService(self._db, self._tombstones)
        self._documents = DocumentService(self._db, self._tasks)
        self._client_factory = client_factory or self._make_client
        self._sync = CalendarSyncAdapter(
            self._db,
            self._tasks,
            self._tombstones,
            self._client_factory,
            delete_tombstoned_remote=settings.delete_tombstoned_remote,
            on_completion_change=self._documents.reflect_completion,
        )

    def _make_client(self, resource: CalendarResource) -> CalDAVClient:
        return CalDAVClient(
            resource.server_url,
            resource.username,
            resource.password,
            timeout=self._settings.http_timeout,
        )

    @property
    def sync_adapter(self) -> CalendarSyncAdapter:
        return self._sync

    # ---- Documents ----

    def reconcile(self, document_id: str, raw_text: str) -> ReconcileResult:
        """Reconcile a document's task lines with the store.

        Args:
            document_id: Stable id of the document (e.g. its path).
            raw_text: Current document text. Pass back the returned
                ``content`` next time so task identities stay stable.

        Returns:
            ReconcileResult with created/updated/deleted tasks and the
            annotated text. ``error`` is set when the store was unavailable.
        """
        return self._documents.reconcile(document_id, raw_text)

    def get_document_content(self, document_id: str) -> Optional[str]:
        document = self._documents.get_document(document_id)
        return document.content if document else None

    # ---- Tasks ----

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get_task(task_id)

    def list_tasks(self, status: Optional[str] = None) -> list[Task]:
        return self._tasks.list_tasks(status=status)

    def complete_task(self, task_id: str) -> CompletionResult:
        """Complete a task; recurring tasks spawn their next occurrence."""
        result = self._tasks.complete_task(task_id)
        self._documents.reflect_completion(task_id, True)
        return result

    def reopen_task(self, task_id: str) -> Task:
        task = self._tasks.reopen_task(task_id)
        self._documents.reflect_completion(task_id, False)
        return task

    def toggle_task(self, task_id: str, completed: bool) -> Task:
        """Completion-toggle from an editor checkbox."""
        if completed:
            return self.complete_task(task_id).task
        return self.reopen_task(task_id)

    def delete_task(self, task_id: str) -> bool:
        """Delete a task everywhere: store, documents and (via tombstone) calendars."""
        self._documents.detach_task(task_id)
        return self._tasks.delete_task(task_id)

    def set_recurrence(self, task_id: str, rule: Optional[RecurrenceRule]) -> Task:
        return self._tasks.set_recurrence(task_id, rule)

    # ---- Calendar resources ----

    def configure_resource(
        self,
        endpoint: str,
        credentials: Credentials,
        kind: ResourceKind = "task_list",
        display_name: Optional[str] = None,
        calendar_url: Optional[str] = None,
        export_local_tasks: bool = False,
    ) -> str:
        """Register a CalDAV resource and return its id."""
        username, password = credentials
        resource = CalendarResource(
            id=str(uuid.uuid4()),
            display_name=display_name or endpoint,
            server_url=endpoint,
            username=username,
            password=password,
            calendar_url=calendar_url,
            kind=kind,
            export_local_tasks=export_local_tasks,
        )
        self._db.insert_resource(resource)
        logger.info("Configured %s resource %s", kind, resource.id)
        return resource.id

    def remove_resource(self, resource_id: str) -> None:
        if not self._db.delete_resource(resource_id):
            raise ResourceNotFoundError(resource_id)

    def list_resources(self) -> list[CalendarResource]:
        return self._db.list_resources(enabled_only=False)

    def discover_calendars(
        self, endpoint: str, credentials: Credentials
    ) -> list[DiscoveredCalendar]:
        """Probe a CalDAV endpoint for calendar collections."""
        username, password = credentials
        probe = CalendarResource(
            id="discovery",
            display_name=endpoint,
            server_url=endpoint,
            username=username,
            password=password,
        )
        with self._client_factory(probe) as client:
            return client.discover()

    def list_calendar_events(self, resource_id: Optional[str] = None) -> list[CalendarEvent]:
        return self._db.list_calendar_events(resource_id)

    # ---- Sync ----

    def sync_now(
        self,
        resource_id: Optional[str] = None,
        abort: Optional[threading.Event] = None,
    ) -> SyncReport:
        """Run one sync pass over one resource or all enabled ones."""
        if resource_id is None:
            return self._sync.sync_all(abort)
        try:
            resource = self._db.get_resource(resource_id)
        except StorageError as e:
            logger.error("Sync skipped, task store unavailable: %s", e)
            return SyncReport(error=str(e))
        if resource is None:
            raise ResourceNotFoundError(resource_id)
        return self._sync.sync_resource(resource, abort)
