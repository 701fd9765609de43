"""Task, recurrence and tombstone schema."""

from datetime import date, datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

TaskStatus = Literal["todo", "done"]
Frequency = Literal["daily", "weekly", "monthly", "yearly"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecurrenceRule(BaseModel):
    """How a task repeats once it is completed.

    Weekdays use Python's numbering (Monday = 0 ... Sunday = 6).
    ``week_of_month`` selects the n-th matching weekday of a month (1..4) or
    the last one (-1); it only applies to monthly rules with ``days_of_week``.
    """

    frequency: Frequency
    interval: int = Field(default=1, ge=1, description="Repeat every N units")
    days_of_week: list[int] = Field(default_factory=list)
    week_of_month: Optional[int] = None

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        for day in value:
            if not 0 <= day <= 6:
                raise ValueError(f"weekday out of range: {day}")
        return sorted(set(value))

    @field_validator("week_of_month")
    @classmethod
    def _check_week_of_month(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value not in (1, 2, 3, 4, -1):
            raise ValueError(f"week_of_month must be 1-4 or -1, got {value}")
        return value

    @property
    def is_ordinal(self) -> bool:
        """True for "n-th weekday of the month" rules."""
        return (
            self.frequency == "monthly"
            and self.week_of_month is not None
            and bool(self.days_of_week)
        )


class Task(BaseModel):
    """The canonical, persistent unit of work."""

    id: str
    content: str
    status: TaskStatus = "todo"
    due_date: Optional[date] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    # Calendar identity; unique per resource
    external_uid: Optional[str] = None
    resource_id: Optional[str] = None
    external_etag: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def completed(self) -> bool:
        return self.status == "done"


class InlineTaskMention(BaseModel):
    """A task line parsed out of document text for one reconciliation pass."""

    inline_id: str
    content: str
    completed: bool = False
    date_token: Optional[str] = None
    due_date: Optional[date] = None
    start: int
    end: int

    @model_validator(mode="after")
    def _check_offsets(self) -> "InlineTaskMention":
        if self.end < self.start:
            raise ValueError("mention end offset precedes start offset")
        return self


class Tombstone(BaseModel):
    """Marks an external UID whose local task was deleted."""

    external_uid: str
    resource_id: Optional[str] = None
    deleted_at: datetime = Field(default_factory=utcnow)


class Document(BaseModel):
    """Last annotated text of a document, as seen by the reconciler."""

    id: str
    content: str = ""
    updated_at: datetime = Field(default_factory=utcnow)
