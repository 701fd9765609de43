"""Task-oriented service operations."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from docket.core.dates import reference_day
from docket.core.recurrence import next_occurrence
from docket.core.tombstones import TombstoneLedger
from docket.database.sqlite import TaskDB
from docket.errors import RecurrenceError, StorageError, TaskNotFoundError
from docket.models import CompletionResult, RecurrenceRule, Task

logger = logging.getLogger(__name__)


class TaskService:
    """Encapsulates task CRUD and task-state transitions."""

    def __init__(self, db: TaskDB, tombstones: TombstoneLedger) -> None:
        self._db = db
        self._tombstones = tombstones

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._db.get_task(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self._db.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self, status: Optional[str] = None) -> list[Task]:
        return self._db.list_tasks(status=status)

    def create_task(
        self,
        content: str,
        due_date: Optional[date] = None,
        recurrence_rule: Optional[RecurrenceRule] = None,
        external_uid: Optional[str] = None,
        resource_id: Optional[str] = None,
        document_id: Optional[str] = None,
        inline_id: Optional[str] = None,
    ) -> Task:
        """Create a task; with document_id it is linked to (and mapped in) that document."""
        task = Task(
            id=str(uuid.uuid4()),
            content=content,
            due_date=due_date,
            recurrence_rule=recurrence_rule,
            external_uid=external_uid,
            resource_id=resource_id,
        )
        self._db.insert_task(task, document_id=document_id, inline_id=inline_id)
        return task

    def update_fields(self, task: Task, changes: dict[str, Any]) -> Task:
        """Persist field changes (content, due_date, ...) and bump updated_at."""
        updated = task.model_copy(
            update={**changes, "updated_at": datetime.now(timezone.utc)}
        )
        self._db.update_task(updated)
        return updated

    def apply_changes(self, task: Task, changes: dict[str, Any]) -> Task:
        """Apply a field diff; status moves go through complete/reopen."""
        fields = {k: v for k, v in changes.items() if k != "status"}
        if fields:
            task = self.update_fields(task, fields)
        status = changes.get("status")
        if status == "done":
            task = self.complete_task(task.id).task
        elif status == "todo":
            task = self.reopen_task(task.id)
        return task

    def complete_task(self, task_id: str) -> CompletionResult:
        """Mark a task done and, for recurring tasks, spawn the next instance.

        The successor carries the same content and rule, a due date computed
        from the task's due date (today when it has none) and every context
        link of the completed task. The completed task loses its rule. When
        expansion fails the completion still commits, without successor.
        Completing a task that is already done changes nothing.
        """
        task = self.require_task(task_id)
        if task.completed:
            return CompletionResult(task=task)

        successor = None
        rule = task.recurrence_rule
        if rule is not None:
            successor = self._spawn_successor(task, rule)

        update: dict[str, Any] = {"status": "done"}
        if successor is not None:
            update["recurrence_rule"] = None
        completed = self.update_fields(task, update)
        return CompletionResult(task=completed, successor=successor)

    def _spawn_successor(self, task: Task, rule: RecurrenceRule) -> Optional[Task]:
        base = task.due_date or reference_day()
        try:
            due = next_occurrence(base, rule)
        except RecurrenceError as e:
            logger.warning("Recurrence expansion failed for task %s: %s", task.id, e)
            return None
        try:
            successor = self.create_task(task.content, due_date=due, recurrence_rule=rule)
            for document_id in self._db.list_contexts(task.id):
                self._db.add_context(successor.id, document_id)
        except StorageError as e:
            logger.warning("Could not store successor of task %s: %s", task.id, e)
            return None
        logger.info("Task %s repeats as %s due %s", task.id, successor.id, due)
        return successor

    def reopen_task(self, task_id: str) -> Task:
        task = self.require_task(task_id)
        if not task.completed:
            return task
        return self.update_fields(task, {"status": "todo"})

    def set_recurrence(self, task_id: str, rule: Optional[RecurrenceRule]) -> Task:
        task = self.require_task(task_id)
        return self.update_fields(task, {"recurrence_rule": rule})

    def delete_task(self, task_id: str) -> bool:
        """Delete a task, its contexts and its identity-map entries.

        A task that came from (or went to) a calendar leaves a tombstone so
        the next sync does not bring it back.
        """
        task = self._db.get_task(task_id)
        if task is None:
            return False
        if task.external_uid:
            self._tombstones.record(task.external_uid, task.resource_id)
        deleted = self._db.delete_task(task_id)
        self._db.drop_mappings(task_id)
        return deleted
