"""Calendar synchronization (CalDAV)."""

from .adapter import CalendarSyncAdapter, SyncState
from .caldav import CalDAVClient
from .scheduler import PeriodicSync

__all__ = ["CalDAVClient", "CalendarSyncAdapter", "PeriodicSync", "SyncState"]
