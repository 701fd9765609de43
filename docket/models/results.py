"""Result payloads returned to the CRUD / API layer."""

from typing import Optional

from pydantic import BaseModel, Field

from .task import Task


class ReconcileResult(BaseModel):
    """Outcome of one reconciliation pass over a document."""

    document_id: str
    created: list[Task] = Field(default_factory=list)
    updated: list[Task] = Field(default_factory=list)
    deleted_ids: list[str] = Field(default_factory=list)
    failed: list[str] = Field(
        default_factory=list, description="Per-mention failure messages"
    )
    content: str = Field("", description="Text annotated with task-id markers")
    error: Optional[str] = Field(
        None, description="Set when the store was unavailable for the pass"
    )

    @property
    def is_noop(self) -> bool:
        return not (self.created or self.updated or self.deleted_ids)


class CompletionResult(BaseModel):
    """A completed task and, for recurring tasks, its spawned successor."""

    task: Task
    successor: Optional[Task] = None


class SyncReport(BaseModel):
    """Counters for one synchronization pass (one or many resources)."""

    pulled: int = 0
    pushed: int = 0
    skipped_tombstoned: int = 0
    deleted_remote: int = 0
    errors: list[str] = Field(default_factory=list)
    busy: list[str] = Field(
        default_factory=list, description="Resources skipped: pass in flight"
    )
    error: Optional[str] = Field(
        None, description="Set when the store was unavailable for the pass"
    )

    def merge(self, other: "SyncReport") -> None:
        """Fold another resource's report into this one."""
        self.pulled += other.pulled
        self.pushed += other.pushed
        self.skipped_tombstoned += other.skipped_tombstoned
        self.deleted_remote += other.deleted_remote
        self.errors.extend(other.errors)
        self.busy.extend(other.busy)
