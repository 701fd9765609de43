"""Next-occurrence computation for repeating tasks."""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from docket.errors import RecurrenceError
from docket.models import RecurrenceRule


def next_occurrence(base: date, rule: RecurrenceRule) -> date:
    """Return the due date of the occurrence following base.

    Month and year arithmetic clamps the day to the target month's length
    (Jan 31 + 1 month -> Feb 28/29, Feb 29 + 1 year -> Feb 28).

    Raises:
        RecurrenceError: the rule cannot produce a date.
    """
    step = rule.interval
    try:
        if rule.frequency == "daily":
            return base + timedelta(days=step)
        if rule.frequency == "weekly":
            if rule.days_of_week:
                return _next_listed_weekday(base, rule.days_of_week, step)
            return base + timedelta(weeks=step)
        if rule.frequency == "monthly":
            if rule.is_ordinal:
                return _nth_weekday_of_month(
                    base + relativedelta(months=step, day=1),
                    rule.days_of_week,
                    rule.week_of_month,
                )
            return base + relativedelta(months=step)
        if rule.frequency == "yearly":
            return base + relativedelta(years=step)
    except (OverflowError, ValueError) as e:
        raise RecurrenceError(f"Cannot advance {base} by {rule!r}: {e}") from e
    raise RecurrenceError(f"Unsupported frequency: {rule.frequency}")


def _next_listed_weekday(base: date, days: list[int], interval: int) -> date:
    """Next listed weekday later this week, else the first listed one `interval` weeks on."""
    current = base.weekday()
    later = [d for d in days if d > current]
    if later:
        return base + timedelta(days=later[0] - current)
    week_start = base - timedelta(days=current)
    return week_start + timedelta(weeks=interval, days=days[0])


def _nth_weekday_of_month(month_start: date, days: list[int], ordinal: int) -> date:
    """Pick the ordinal-th date of the month whose weekday is in days.

    Ordinals are 1-indexed; negative values count from the end. Past the end
    the last candidate is used, before the start the first one.
    """
    length = calendar.monthrange(month_start.year, month_start.month)[1]
    allowed = set(days)
    candidates = [
        month_start.replace(day=d)
        for d in range(1, length + 1)
        if month_start.replace(day=d).weekday() in allowed
    ]
    if not candidates:
        raise RecurrenceError(
            f"No matching weekday in {month_start:%Y-%m} for days {sorted(allowed)}"
        )
    if ordinal > 0:
        return candidates[min(ordinal, len(candidates)) - 1]
    index = len(candidates) + ordinal
    return candidates[max(index, 0)]
