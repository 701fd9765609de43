"""Unit tests for the CalDAV client against httpx.MockTransport."""

from datetime import date

import httpx
import pytest

from docket.errors import SyncError
from docket.sync.caldav import CalDAVClient

SERVER = "https://dav.example.com/dav/"
HOME = "https://dav.example.com/remote.php/dav/calendars/alice/"

CALENDARS = """<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/remote.php/dav/calendars/alice/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/calendars/alice/tasks/</d:href>
    <d:propstat><d:prop>
      <d:displayname>Tasks</d:displayname>
      <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
      <c:supported-calendar-component-set><c:comp name="VTODO"/></c:supported-calendar-component-set>
    </d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/remote.php/dav/calendars/alice/personal</d:href>
    <d:propstat><d:prop>
      <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
      <c:supported-calendar-component-set><c:comp name="VEVENT"/></c:supported-calendar-component-set>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

TODOS = """<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/remote.php/dav/calendars/alice/tasks/a.ics</d:href>
    <d:propstat><d:prop>
      <d:getetag>"etag-a"</d:getetag>
      <c:calendar-data>BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//EN
BEGIN:VTODO
UID:a
SUMMARY:Call plumber
DUE;VALUE=DATE:20240614
DTSTAMP:20240611T080000Z
END:VTODO
END:VCALENDAR
</c:calendar-data>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""


def _client(handler) -> CalDAVClient:
    return CalDAVClient(SERVER, "alice", "pw", transport=httpx.MockTransport(handler))


def test_discover_probes_candidates_until_calendars_found() -> None:
    """The endpoint 404s; the Nextcloud home answers with two calendars."""
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url)))
        assert request.headers["Depth"] == "1"
        if str(request.url) == HOME:
            return httpx.Response(207, text=CALENDARS)
        return httpx.Response(404)

    with _client(handler) as client:
        calendars = client.discover()

    assert seen == [("PROPFIND", SERVER), ("PROPFIND", HOME)]
    assert [c.display_name for c in calendars] == ["Tasks", "personal"]
    assert calendars[0].url == HOME + "tasks/"
    assert calendars[1].url == HOME + "personal/"
    assert calendars[0].supports("VTODO") and not calendars[0].supports("VEVENT")


def test_discover_returns_empty_when_nothing_answers() -> None:
    """No candidate with calendars -> empty list."""
    with _client(lambda request: httpx.Response(404)) as client:
        assert client.discover() == []


def test_fetch_todos_parses_report() -> None:
    """REPORT results become RemoteItems with absolute hrefs and etags."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "REPORT"
        assert b"VTODO" in request.content
        return httpx.Response(207, text=TODOS)

    with _client(handler) as client:
        items = client.fetch_todos(HOME + "tasks/")

    assert len(items) == 1
    item = items[0]
    assert item.uid == "a"
    assert item.summary == "Call plumber"
    assert item.due == date(2024, 6, 14)
    assert item.etag == '"etag-a"'
    assert item.href == HOME + "tasks/a.ics"


def test_put_retries_without_if_match_on_412() -> None:
    """A stale etag is retried once unconditionally; the new etag is returned."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "If-Match" in request.headers:
            return httpx.Response(412)
        return httpx.Response(204, headers={"ETag": '"new"'})

    with _client(handler) as client:
        etag = client.put_item(HOME + "tasks/a.ics", "BEGIN:VCALENDAR\nEND:VCALENDAR", '"old"')

    assert etag == '"new"'
    assert len(requests) == 2
    assert requests[0].headers["If-Match"] == '"old"'
    assert "If-Match" not in requests[1].headers


def test_put_reads_oc_etag() -> None:
    """Servers that only send OC-ETag still report the new etag."""
    with _client(lambda request: httpx.Response(201, headers={"OC-ETag": '"oc"'})) as client:
        assert client.put_item(HOME + "tasks/b.ics", "X") == '"oc"'


def test_put_failure_raises() -> None:
    """Server errors surface as SyncError."""
    with _client(lambda request: httpx.Response(500)) as client:
        with pytest.raises(SyncError):
            client.put_item(HOME + "tasks/b.ics", "X")


def test_auth_failure_raises() -> None:
    """401 is an authentication failure."""
    with _client(lambda request: httpx.Response(401)) as client:
        with pytest.raises(SyncError, match="Authentication"):
            client.fetch_todos(HOME + "tasks/")


def test_network_error_raises() -> None:
    """Transport errors are wrapped in SyncError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _client(handler) as client:
        with pytest.raises(SyncError):
            client.fetch_todos(HOME + "tasks/")


def test_delete_tolerates_missing_item() -> None:
    """Deleting something already gone is fine."""
    with _client(lambda request: httpx.Response(404)) as client:
        client.delete_item(HOME + "tasks/gone.ics")


def test_item_url() -> None:
    """New items live at <collection>/<uid>.ics."""
    with _client(lambda request: httpx.Response(200)) as client:
        assert client.item_url(HOME + "tasks", "abc") == HOME + "tasks/abc.ics"


def test_invalid_url_raises_sync_error() -> None:
    """A malformed collection URL is a SyncError, not an httpx exception."""
    with CalDAVClient("http://host:abc/", "alice", "pw") as client:
        with pytest.raises(SyncError):
            client.fetch_todos("http://host:abc/tasks/")


SPLIT_PROPSTAT = """<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/dav/work/</d:href>
    <d:propstat>
      <d:prop><c:supported-calendar-component-set/></d:prop>
      <d:status>HTTP/1.1 404 Not Found</d:status>
    </d:propstat>
    <d:propstat>
      <d:prop>
        <d:displayname>Work</d:displayname>
        <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>"""


def test_discover_reads_every_propstat() -> None:
    """A 404 propstat listed first does not hide the calendar's properties."""
    with _client(lambda request: httpx.Response(207, text=SPLIT_PROPSTAT)) as client:
        calendars = client.discover()

    assert [c.display_name for c in calendars] == ["Work"]
    assert calendars[0].url == "https://dav.example.com/dav/work/"
    assert calendars[0].components == []
