"""Global fixtures: temp DB, services, fake CalDAV client."""

import tempfile
from datetime import date
from pathlib import Path
from typing import Optional

import pytest

from docket.core.services import DocumentService, TaskService
from docket.core.tombstones import TombstoneLedger
from docket.database.sqlite import TaskDB
from docket.models import CalendarEvent, CalendarResource, DiscoveredCalendar, RemoteItem

# A Tuesday
REFERENCE = date(2024, 6, 11)


@pytest.fixture
def temp_db_path() -> Path:
    """Temporary SQLite path (cleaned up after test)."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = Path(f.name)
    yield path
    if path.exists():
        path.unlink(missing_ok=True)


@pytest.fixture
def db(temp_db_path: Path) -> TaskDB:
    """Initialized TaskDB with temp path."""
    d = TaskDB(temp_db_path)
    d.init_db()
    return d


@pytest.fixture
def ledger(db: TaskDB) -> TombstoneLedger:
    return TombstoneLedger(db)


@pytest.fixture
def task_service(db: TaskDB, ledger: TombstoneLedger) -> TaskService:
    return TaskService(db, ledger)


@pytest.fixture
def document_service(db: TaskDB, task_service: TaskService) -> DocumentService:
    return DocumentService(db, task_service)


@pytest.fixture
def resource(db: TaskDB) -> CalendarResource:
    """A task-list resource with a known collection URL."""
    r = CalendarResource(
        id="res-1",
        display_name="Work",
        server_url="https://dav.example.com/",
        username="alice",
        password="secret",
        calendar_url="https://dav.example.com/calendars/alice/tasks/",
    )
    db.insert_resource(r)
    return r


class FakeCalDAVClient:
    """In-memory stand-in for CalDAVClient used by adapter tests."""

    def __init__(self) -> None:
        self.items: dict[str, RemoteItem] = {}
        self.events: list[CalendarEvent] = []
        self.calendars: list[DiscoveredCalendar] = []
        self.puts: list[tuple[str, str, Optional[str]]] = []
        self.deletes: list[str] = []
        self.fail_with: Optional[Exception] = None
        self.on_fetch = None
        self._etag_counter = 0

    def __enter__(self) -> "FakeCalDAVClient":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def add_item(self, item: RemoteItem) -> None:
        if not item.href:
            item = item.model_copy(update={"href": f"https://dav.example.com/{item.uid}.ics"})
        self.items[item.uid] = item

    def discover(self) -> list[DiscoveredCalendar]:
        return self.calendars

    def fetch_todos(self, calendar_url: str) -> list[RemoteItem]:
        if self.on_fetch is not None:
            self.on_fetch()
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.items.values())

    def fetch_events(self, calendar_url: str, resource_id: str) -> list[CalendarEvent]:
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.events)

    def item_url(self, calendar_url: str, uid: str) -> str:
        return f"{calendar_url}{uid}.ics"

    def put_item(self, url: str, ics: str, etag: Optional[str] = None) -> Optional[str]:
        self.puts.append((url, ics, etag))
        self._etag_counter += 1
        return f'"etag-{self._etag_counter}"'

    def delete_item(self, url: str, etag: Optional[str] = None) -> None:
        self.deletes.append(url)


@pytest.fixture
def fake_client() -> FakeCalDAVClient:
    return FakeCalDAVClient()
