"""Minimal CalDAV client over httpx (discovery, calendar-query, PUT, DELETE)."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Optional
from urllib.parse import quote, urljoin, urlsplit

import httpx

from docket.errors import SyncError
from docket.models import CalendarEvent, DiscoveredCalendar, RemoteItem

from .ical import parse_events, parse_todo

logger = logging.getLogger(__name__)

DAV = "DAV:"
CALDAV = "urn:ietf:params:xml:ns:caldav"
NS = {"d": DAV, "c": CALDAV}

PROPFIND_CALENDARS = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:displayname/>
    <d:resourcetype/>
    <c:supported-calendar-component-set/>
  </d:prop>
</d:propfind>"""

CALENDAR_QUERY = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag/>
    <c:calendar-data/>
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="{component}"/>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""


def _ensure_slash(url: str) -> str:
    return url if url.endswith("/") else url + "/"


def _new_etag(response: httpx.Response) -> Optional[str]:
    # Nextcloud reports the stored etag as OC-ETag when ETag is withheld
    return response.headers.get("etag") or response.headers.get("oc-etag")


class CalDAVClient:
    """Talks to one CalDAV account. Every failure surfaces as SyncError."""

    def __init__(
        self,
        server_url: str,
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._server_url = _ensure_slash(server_url)
        self._username = username
        self._client = httpx.Client(
            auth=(username, password) if username else None,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    def __enter__(self) -> "CalDAVClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SyncError(f"{method} {url} failed: {e}") from e
        if response.status_code in (401, 403):
            raise SyncError(f"Authentication rejected by {url} ({response.status_code})")
        return response

    def _multistatus(self, response: httpx.Response) -> list[ET.Element]:
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise SyncError(f"Malformed multistatus from {response.url}: {e}") from e
        return root.findall("d:response", NS)

    # ---- Discovery ----

    def candidate_urls(self) -> list[str]:
        """Endpoint first, then the common calendar-home locations."""
        parts = urlsplit(self._server_url)
        root = f"{parts.scheme}://{parts.netloc}/"
        user = quote(self._username)
        candidates = [self._server_url]
        if user:
            candidates.append(urljoin(root, f"remote.php/dav/calendars/{user}/"))
            candidates.append(urljoin(root, f"calendars/{user}/"))
        return list(dict.fromkeys(candidates))

    def discover(self) -> list[DiscoveredCalendar]:
        """Probe the candidate URLs; return the collections of the first that answers."""
        for url in self.candidate_urls():
            response = self._request(
                "PROPFIND",
                url,
                content=PROPFIND_CALENDARS,
                headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
            )
            if response.status_code != 207:
                logger.debug("PROPFIND %s returned %s", url, response.status_code)
                continue
            calendars = self._parse_calendars(response)
            if calendars:
                return calendars
        return []

    def _parse_calendars(self, response: httpx.Response) -> list[DiscoveredCalendar]:
        found = []
        for entry in self._multistatus(response):
            href = entry.findtext("d:href", default="", namespaces=NS).strip()
            if not href:
                continue
            # Properties may be split over several propstat blocks (200 and 404)
            if entry.find("d:propstat/d:prop/d:resourcetype/c:calendar", NS) is None:
                continue
            url = urljoin(str(response.url), href)
            names = [
                (el.text or "").strip()
                for el in entry.findall("d:propstat/d:prop/d:displayname", NS)
            ]
            name = next((n for n in names if n), "")
            components = [
                comp.get("name", "").upper()
                for comp in entry.findall(
                    "d:propstat/d:prop/c:supported-calendar-component-set/c:comp", NS
                )
                if comp.get("name")
            ]
            found.append(
                DiscoveredCalendar(
                    display_name=name or href.rstrip("/").rsplit("/", 1)[-1],
                    url=_ensure_slash(url),
                    components=components,
                )
            )
        return found

    # ---- Fetch ----

    def _query(self, calendar_url: str, component: str) -> list[tuple[str, Optional[str], str]]:
        """REPORT calendar-query; returns (absolute href, etag, calendar-data)."""
        url = _ensure_slash(calendar_url)
        response = self._request(
            "REPORT",
            url,
            content=CALENDAR_QUERY.format(component=component),
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
        )
        if response.status_code != 207:
            raise SyncError(f"REPORT {url} returned {response.status_code}")
        rows = []
        for entry in self._multistatus(response):
            href = entry.findtext("d:href", default="", namespaces=NS).strip()
            data = entry.findtext("d:propstat/d:prop/c:calendar-data", default="", namespaces=NS)
            if not href or not data:
                continue
            etag = entry.findtext("d:propstat/d:prop/d:getetag", default=None, namespaces=NS)
            rows.append((urljoin(url, href), etag.strip() if etag else None, data))
        return rows

    def fetch_todos(self, calendar_url: str) -> list[RemoteItem]:
        items = []
        for href, etag, data in self._query(calendar_url, "VTODO"):
            item = parse_todo(data, href=href, etag=etag)
            if item is not None:
                items.append(item)
        return items

    def fetch_events(self, calendar_url: str, resource_id: str) -> list[CalendarEvent]:
        events = []
        for _, _, data in self._query(calendar_url, "VEVENT"):
            events.extend(parse_events(data, resource_id))
        return events

    # ---- Write ----

    def item_url(self, calendar_url: str, uid: str) -> str:
        return urljoin(_ensure_slash(calendar_url), f"{quote(uid)}.ics")

    def put_item(self, url: str, ics: str, etag: Optional[str] = None) -> Optional[str]:
        """PUT a calendar object; returns the new etag when the server reports one.

        A 412 on a conditional PUT is retried once without If-Match.
        """
        headers = {"Content-Type": "text/calendar; charset=utf-8"}
        if etag:
            headers["If-Match"] = etag
        response = self._request("PUT", url, content=ics.encode("utf-8"), headers=headers)
        if response.status_code == 412 and etag:
            logger.info("Precondition failed for %s; retrying unconditionally", url)
            headers.pop("If-Match")
            response = self._request("PUT", url, content=ics.encode("utf-8"), headers=headers)
        if response.status_code >= 400:
            raise SyncError(f"PUT {url} returned {response.status_code}")
        return _new_etag(response)

    def delete_item(self, url: str, etag: Optional[str] = None) -> None:
        headers = {"If-Match": etag} if etag else {}
        response = self._request("DELETE", url, headers=headers)
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise SyncError(f"DELETE {url} returned {response.status_code}")
