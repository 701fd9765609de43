"""Utilities for resolving human date expressions found in task lines."""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Optional

# Relative expressions resolve against noon of the local day so that a
# timezone shift near midnight never moves the result to a neighbour day.
REFERENCE_HOUR = 12

WEEKDAYS = {
    "monday": 0,
    "mon": 0,
    "tuesday": 1,
    "tue": 1,
    "tues": 1,
    "wednesday": 2,
    "wed": 2,
    "thursday": 3,
    "thu": 3,
    "thur": 3,
    "thurs": 3,
    "friday": 4,
    "fri": 4,
    "saturday": 5,
    "sat": 5,
    "sunday": 6,
    "sun": 6,
}


def reference_day(now: Optional[datetime] = None) -> date:
    """Return the calendar day of "noon today, local time"."""
    current = now or datetime.now()
    return current.replace(hour=REFERENCE_HOUR, minute=0, second=0, microsecond=0).date()


def resolve_date(expression: str, reference: Optional[date] = None) -> Optional[date]:
    """Resolve a date expression into a concrete date.

    Accepted values, checked in this order:
    - today / tomorrow / yesterday
    - end of week (Sunday of the Monday-anchored week) / end of month
    - in N days
    - <weekday> / next <weekday>
    - YYYY-MM-DD

    Returns None for anything else. Never raises.
    """
    if not isinstance(expression, str):
        return None
    value = " ".join(expression.strip().lower().split())
    if not value:
        return None
    today = reference or reference_day()

    if value == "today":
        return today
    if value == "tomorrow":
        return today + timedelta(days=1)
    if value == "yesterday":
        return today - timedelta(days=1)

    if value == "end of week":
        return today + timedelta(days=6 - today.weekday())
    if value == "end of month":
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=last)

    days = _in_n_days(value)
    if days is not None:
        try:
            return today + timedelta(days=days)
        except OverflowError:
            return None

    weekday = _weekday(value, today)
    if weekday is not None:
        return weekday

    return _iso_date(value)


def _in_n_days(value: str) -> Optional[int]:
    parts = value.split(" ")
    if len(parts) != 3 or parts[0] != "in" or parts[2] not in ("day", "days"):
        return None
    if not (parts[1].isascii() and parts[1].isdigit()):
        return None
    return int(parts[1])


def _weekday(value: str, today: date) -> Optional[date]:
    skip_week = False
    name = value
    if value.startswith("next "):
        skip_week = True
        name = value[len("next ") :]
    target = WEEKDAYS.get(name)
    if target is None:
        return None
    # Bare name: next occurrence on or after today
    result = today + timedelta(days=(target - today.weekday()) % 7)
    if skip_week:
        result += timedelta(days=7)
    return result


def _iso_date(value: str) -> Optional[date]:
    parts = value.split("-")
    if len(parts) != 3 or [len(p) for p in parts] != [4, 2, 2]:
        return None
    if not all(p.isascii() and p.isdigit() for p in parts):
        return None
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError:
        return None
