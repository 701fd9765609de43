"""VTODO / VEVENT encoding with icalendar."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from icalendar import Calendar, Todo

from docket.models import CalendarEvent, RemoteItem, Task

logger = logging.getLogger(__name__)

PRODID = "-//Docket//docket//EN"


def _load(ics: str) -> Optional[Calendar]:
    try:
        return Calendar.from_ical(ics)
    except (ValueError, IndexError) as e:
        logger.warning("Skipping unparseable calendar data: %s", e)
        return None


def _value(component: Any, name: str) -> Any:
    prop = component.get(name)
    return getattr(prop, "dt", None) if prop is not None else None


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return None


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def parse_todo(ics: str, href: str = "", etag: Optional[str] = None) -> Optional[RemoteItem]:
    """Return the first VTODO of an iCalendar payload, or None."""
    cal = _load(ics)
    if cal is None:
        return None
    for todo in cal.walk("VTODO"):
        uid = str(todo.get("uid", "")).strip()
        if not uid:
            continue
        status = str(todo.get("status", "")).upper()
        return RemoteItem(
            uid=uid,
            summary=str(todo.get("summary", "")).strip(),
            due=_as_date(_value(todo, "due") or _value(todo, "dtstart")),
            completed=status == "COMPLETED" or todo.get("completed") is not None,
            last_modified=_as_utc(_value(todo, "last-modified") or _value(todo, "dtstamp")),
            href=href,
            etag=etag,
        )
    return None


def build_todo(task: Task, uid: str) -> str:
    """Serialize a task as a single-VTODO calendar object."""
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    todo = Todo()
    todo.add("uid", uid)
    todo.add("summary", task.content)
    todo.add("dtstamp", datetime.now(timezone.utc))
    todo.add("last-modified", task.updated_at.astimezone(timezone.utc))
    if task.due_date is not None:
        todo.add("due", task.due_date)
    if task.completed:
        todo.add("status", "COMPLETED")
        todo.add("completed", task.updated_at.astimezone(timezone.utc))
    else:
        todo.add("status", "NEEDS-ACTION")
    cal.add_component(todo)
    return cal.to_ical().decode("utf-8")


def parse_events(ics: str, resource_id: str) -> list[CalendarEvent]:
    """Return every VEVENT of an iCalendar payload as cache rows."""
    cal = _load(ics)
    if cal is None:
        return []
    events = []
    for event in cal.walk("VEVENT"):
        uid = str(event.get("uid", "")).strip()
        if not uid:
            continue
        start = _value(event, "dtstart")
        events.append(
            CalendarEvent(
                uid=uid,
                resource_id=resource_id,
                summary=str(event.get("summary", "")).strip(),
                start=_as_utc(start),
                end=_as_utc(_value(event, "dtend")),
                all_day=isinstance(start, date) and not isinstance(start, datetime),
                last_modified=_as_utc(_value(event, "last-modified")),
            )
        )
    return events
