"""Reconcile document text against the task store."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Optional

from docket.core.content import remove_task_lines, set_task_completion
from docket.core.parser import ParseResult, format_marker, parse_tasks
from docket.core.reconciler import plan_reconciliation
from docket.database.sqlite import TaskDB
from docket.errors import DocketError, StorageError
from docket.models import Document, ReconcileResult, Task

from .tasks import TaskService

logger = logging.getLogger(__name__)


def _rematch(parsed: ParseResult, previous: dict[str, str], known: dict[str, Task]) -> ParseResult:
    """Give unmarked lines the identity of a vanished line with the same content.

    Text that lost its markers (pasted back, edited elsewhere) then keeps its
    tasks instead of recreating them.
    """
    if not parsed.minted:
        return parsed
    present = {m.inline_id for m in parsed.mentions}
    free = [
        (inline_id, known[task_id])
        for inline_id, task_id in previous.items()
        if inline_id not in present and task_id in known
    ]
    minted = set(parsed.minted)
    mentions = []
    text = parsed.text
    for mention in parsed.mentions:
        match = None
        if mention.inline_id in minted:
            match = next((f for f in free if f[1].content == mention.content), None)
        if match is None:
            mentions.append(mention)
            continue
        free.remove(match)
        text = text.replace(format_marker(mention.inline_id), format_marker(match[0]), 1)
        mentions.append(mention.model_copy(update={"inline_id": match[0]}))
    return ParseResult(mentions=mentions, text=text, minted=parsed.minted)


class DocumentService:
    """Applies reconciliation plans and reflects task changes into documents.

    Passes for one document never interleave; different documents proceed
    independently.
    """

    def __init__(self, db: TaskDB, tasks: TaskService) -> None:
        self._db = db
        self._tasks = tasks
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, document_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(document_id)
            if lock is None:
                lock = self._locks[document_id] = threading.Lock()
            return lock

    def reconcile(
        self,
        document_id: str,
        raw_text: str,
        reference: Optional[date] = None,
    ) -> ReconcileResult:
        """Bring the store in line with the tasks mentioned in raw_text.

        Feeding the returned ``content`` back on the next call keeps task
        identities stable; a second pass over unchanged text is a no-op.
        """
        with self._lock_for(document_id):
            try:
                return self._reconcile(document_id, raw_text, reference)
            except StorageError as e:
                logger.error("Reconciliation of %s aborted: %s", document_id, e)
                return ReconcileResult(document_id=document_id, content=raw_text, error=str(e))

    def _reconcile(
        self, document_id: str, raw_text: str, reference: Optional[date]
    ) -> ReconcileResult:
        previous = self._db.get_identity_map(document_id)
        known = self._db.get_tasks(list(set(previous.values())))
        parsed = _rematch(parse_tasks(raw_text, reference=reference), previous, known)
        plan = plan_reconciliation(previous, parsed.mentions, known)

        result = ReconcileResult(document_id=document_id, content=parsed.text)
        new_map = dict(plan.unchanged)

        for update in plan.updates:
            inline_id = update.mention.inline_id
            new_map[inline_id] = update.task.id
            try:
                result.updated.append(self._tasks.apply_changes(update.task, update.changes))
            except DocketError as e:
                logger.warning("Update of task %s failed: %s", update.task.id, e)
                result.failed.append(f"{inline_id}: {e}")

        for mention in plan.creates:
            try:
                task = self._tasks.create_task(
                    mention.content,
                    due_date=mention.due_date,
                    document_id=document_id,
                    inline_id=mention.inline_id,
                )
                new_map[mention.inline_id] = task.id
                if mention.completed:
                    task = self._tasks.complete_task(task.id).task
                result.created.append(task)
            except DocketError as e:
                logger.warning("Creating task for %s failed: %s", mention.inline_id, e)
                result.failed.append(f"{mention.inline_id}: {e}")

        for orphan in plan.orphans:
            try:
                if self._tasks.delete_task(orphan.task_id):
                    result.deleted_ids.append(orphan.task_id)
            except DocketError as e:
                # Keep the mapping so the next pass retries the cleanup
                new_map[orphan.inline_id] = orphan.task_id
                logger.warning("Deleting orphan task %s failed: %s", orphan.task_id, e)
                result.failed.append(f"{orphan.inline_id}: {e}")

        try:
            self._db.save_identity_map(document_id, new_map)
            self._db.save_document(
                Document(id=document_id, content=parsed.text, updated_at=datetime.now(timezone.utc))
            )
        except StorageError as e:
            # Created tasks already carry their mapping; the annotated text stays valid
            logger.error("Saving reconciliation of %s failed: %s", document_id, e)
            result.error = str(e)
            return result
        if not result.is_noop:
            logger.info(
                "Reconciled %s: %d created, %d updated, %d deleted",
                document_id,
                len(result.created),
                len(result.updated),
                len(result.deleted_ids),
            )
        return result

    def reflect_completion(self, task_id: str, completed: bool) -> None:
        """Flip the checkbox of task_id in every stored document mentioning it."""
        for document_id, inline_id in self._db.find_mappings(task_id):
            with self._lock_for(document_id):
                document = self._db.get_document(document_id)
                if document is None:
                    continue
                content = set_task_completion(document.content, inline_id, completed)
                if content != document.content:
                    self._save(document, content)

    def detach_task(self, task_id: str) -> None:
        """Remove the lines of task_id from every stored document."""
        for document_id, inline_id in self._db.find_mappings(task_id):
            with self._lock_for(document_id):
                document = self._db.get_document(document_id)
                if document is None:
                    continue
                self._save(document, remove_task_lines(document.content, [inline_id]))

    def get_document(self, document_id: str) -> Optional[Document]:
        return self._db.get_document(document_id)

    def _save(self, document: Document, content: str) -> None:
        self._db.save_document(
            document.model_copy(
                update={"content": content, "updated_at": datetime.now(timezone.utc)}
            )
        )
