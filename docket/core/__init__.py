"""Application logic layer."""

from .dates import reference_day, resolve_date
from .parser import parse_tasks, strip_markers
from .recurrence import next_occurrence

__all__ = [
    "next_occurrence",
    "parse_tasks",
    "reference_day",
    "resolve_date",
    "strip_markers",
]
