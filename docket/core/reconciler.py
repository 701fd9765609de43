"""Diff in-document task mentions against the persistent store.

Planning is pure: it compares a document's previous identity map and the
freshly parsed mentions and returns the operations needed to bring the store
in line. DocumentService applies the plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from docket.models import InlineTaskMention, Task


@dataclass
class PlannedUpdate:
    """A mapped task whose fields drifted from its mention."""

    mention: InlineTaskMention
    task: Task
    changes: dict[str, Any]


@dataclass
class PlannedOrphan:
    """An identity that disappeared from the document."""

    inline_id: str
    task_id: str


@dataclass
class ReconciliationPlan:
    updates: list[PlannedUpdate] = field(default_factory=list)
    creates: list[InlineTaskMention] = field(default_factory=list)
    orphans: list[PlannedOrphan] = field(default_factory=list)
    # inline_id -> task_id pairs kept as-is
    unchanged: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.updates or self.creates or self.orphans)


def diff_fields(mention: InlineTaskMention, task: Task) -> dict[str, Any]:
    """Return the task fields that differ from the mention."""
    changes: dict[str, Any] = {}
    if mention.content != task.content:
        changes["content"] = mention.content
    if mention.due_date != task.due_date:
        changes["due_date"] = mention.due_date
    if mention.completed != task.completed:
        changes["status"] = "done" if mention.completed else "todo"
    return changes


def plan_reconciliation(
    previous_map: Mapping[str, str],
    mentions: list[InlineTaskMention],
    known_tasks: Mapping[str, Task],
) -> ReconciliationPlan:
    """Build the create/update/delete plan for one document.

    Args:
        previous_map: inline_id -> task_id from the last pass.
        mentions: Mentions parsed from the current text, in order.
        known_tasks: Tasks currently in the store, keyed by id. A mapping whose
            task is missing here is treated as absent and the mention is
            re-created.
    """
    plan = ReconciliationPlan()
    present: set[str] = set()

    for mention in mentions:
        present.add(mention.inline_id)
        task_id = previous_map.get(mention.inline_id)
        task = known_tasks.get(task_id) if task_id else None
        if task is None:
            plan.creates.append(mention)
            continue
        changes = diff_fields(mention, task)
        if changes:
            plan.updates.append(PlannedUpdate(mention=mention, task=task, changes=changes))
        else:
            plan.unchanged[mention.inline_id] = task.id

    still_referenced = {
        previous_map[m.inline_id] for m in mentions if m.inline_id in previous_map
    }
    for inline_id, task_id in previous_map.items():
        if inline_id in present:
            continue
        if task_id in still_referenced:
            # Another surviving identity still points at this task
            continue
        plan.orphans.append(PlannedOrphan(inline_id=inline_id, task_id=task_id))

    return plan
