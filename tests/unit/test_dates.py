"""Unit tests for date expression resolution."""

from datetime import date, datetime

import pytest

from docket.core.dates import reference_day, resolve_date

# Tuesday
REF = date(2024, 6, 11)


@pytest.mark.parametrize(
    ("expression", "expected"),
    [
        ("today", date(2024, 6, 11)),
        ("tomorrow", date(2024, 6, 12)),
        ("yesterday", date(2024, 6, 10)),
        ("end of week", date(2024, 6, 16)),
        ("end of month", date(2024, 6, 30)),
        ("in 3 days", date(2024, 6, 14)),
        ("in 1 day", date(2024, 6, 12)),
        ("friday", date(2024, 6, 14)),
        ("tuesday", date(2024, 6, 11)),
        ("monday", date(2024, 6, 17)),
        ("next friday", date(2024, 6, 21)),
        ("next tuesday", date(2024, 6, 18)),
        ("fri", date(2024, 6, 14)),
        ("2024-02-29", date(2024, 2, 29)),
    ],
)
def test_resolve_known_expressions(expression: str, expected: date) -> None:
    """Each supported form resolves against the reference day."""
    assert resolve_date(expression, REF) == expected


def test_resolve_is_case_and_whitespace_tolerant() -> None:
    """Case and surrounding/inner whitespace do not matter."""
    assert resolve_date("  TOMORROW ", REF) == date(2024, 6, 12)
    assert resolve_date("End   Of  Month", REF) == date(2024, 6, 30)
    assert resolve_date("Next  Friday", REF) == date(2024, 6, 21)


@pytest.mark.parametrize(
    "expression",
    ["", "   ", "someday", "2023-02-29", "2024-6-1", "in two days", "in ٣ days", "next"],
)
def test_unrecognized_returns_none(expression: str) -> None:
    """Anything outside the grammar yields None instead of raising."""
    assert resolve_date(expression, REF) is None


def test_end_of_week_on_sunday_is_same_day() -> None:
    """The week is Monday-anchored, so Sunday is its own end."""
    assert resolve_date("end of week", date(2024, 6, 16)) == date(2024, 6, 16)


def test_end_of_month_february_leap_year() -> None:
    """end of month honours leap years."""
    assert resolve_date("end of month", date(2024, 2, 3)) == date(2024, 2, 29)


def test_reference_day_uses_local_calendar_day() -> None:
    """reference_day keeps the calendar day of the given moment."""
    assert reference_day(datetime(2024, 6, 11, 23, 59)) == date(2024, 6, 11)
    assert reference_day(datetime(2024, 6, 11, 0, 1)) == date(2024, 6, 11)
