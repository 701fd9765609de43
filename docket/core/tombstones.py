"""Ledger of deleted externally-sourced tasks."""

import logging
from typing import Optional

from docket.database.sqlite import TaskDB
from docket.models import Tombstone

logger = logging.getLogger(__name__)


class TombstoneLedger:
    """Append-only record of external UIDs whose local task was deleted.

    The sync adapter consults it so that a remote copy never resurrects a
    task the user removed. Entries are never removed.
    """

    def __init__(self, db: TaskDB) -> None:
        self._db = db

    def record(self, external_uid: str, resource_id: Optional[str] = None) -> Tombstone:
        tombstone = Tombstone(external_uid=external_uid, resource_id=resource_id)
        self._db.insert_tombstone(tombstone)
        logger.info("Tombstoned external uid %s (resource %s)", external_uid, resource_id)
        return tombstone

    def is_tombstoned(self, external_uid: str) -> bool:
        return self._db.has_tombstone(external_uid)

    def entries(self) -> list[Tombstone]:
        return self._db.list_tombstones()
