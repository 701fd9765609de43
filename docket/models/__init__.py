"""Domain models."""

from .calendar import (
    CalendarEvent,
    CalendarResource,
    DiscoveredCalendar,
    RemoteItem,
    ResourceKind,
)
from .results import CompletionResult, ReconcileResult, SyncReport
from .task import (
    Document,
    Frequency,
    InlineTaskMention,
    RecurrenceRule,
    Task,
    TaskStatus,
    Tombstone,
)

__all__ = [
    "CalendarEvent",
    "CalendarResource",
    "CompletionResult",
    "DiscoveredCalendar",
    "Document",
    "Frequency",
    "InlineTaskMention",
    "ReconcileResult",
    "RecurrenceRule",
    "RemoteItem",
    "ResourceKind",
    "SyncReport",
    "Task",
    "TaskStatus",
    "Tombstone",
]
