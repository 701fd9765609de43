"""External calendar resources and the items exchanged with them."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .task import utcnow

ResourceKind = Literal["task_list", "event_calendar"]


class CalendarResource(BaseModel):
    """A configured CalDAV collection to synchronize with.

    ``task_list`` resources map VTODO items onto tasks; ``event_calendar``
    resources only feed the read-only event cache.
    """

    id: str
    display_name: str
    server_url: str = Field(description="CalDAV endpoint the user entered")
    username: str = ""
    password: str = ""
    calendar_url: Optional[str] = Field(
        None, description="Concrete collection URL; discovered when empty"
    )
    kind: ResourceKind = "task_list"
    enabled: bool = True
    export_local_tasks: bool = Field(
        False, description="Push local tasks without a UID to this resource"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DiscoveredCalendar(BaseModel):
    """One collection found while probing a CalDAV server."""

    display_name: str
    url: str
    components: list[str] = Field(default_factory=list)

    def supports(self, component: str) -> bool:
        # Servers that omit supported-calendar-component-set accept everything
        return not self.components or component in self.components


class RemoteItem(BaseModel):
    """A VTODO as seen on the server."""

    uid: str
    summary: str = ""
    due: Optional[date] = None
    completed: bool = False
    last_modified: Optional[datetime] = None
    href: str = ""
    etag: Optional[str] = None


class CalendarEvent(BaseModel):
    """A VEVENT cached from an event calendar. Never written back."""

    uid: str
    resource_id: str
    summary: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    last_modified: Optional[datetime] = None
