"""Exception hierarchy shared by the store, services and sync adapter."""


class DocketError(Exception):
    """Base class for all Docket errors."""


class StorageError(DocketError):
    """The persistent store could not be reached or failed a write."""


class TaskNotFoundError(DocketError):
    """No task exists with the requested id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ResourceNotFoundError(DocketError):
    """No calendar resource exists with the requested id."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Calendar resource not found: {resource_id}")
        self.resource_id = resource_id


class IdentityConflictError(DocketError):
    """A second task tried to claim an external UID already in use."""

    def __init__(self, external_uid: str, resource_id: str | None) -> None:
        super().__init__(
            f"External UID {external_uid} already belongs to a task "
            f"in resource {resource_id}"
        )
        self.external_uid = external_uid
        self.resource_id = resource_id


class RecurrenceError(DocketError):
    """A recurrence rule could not produce a next occurrence."""


class SyncError(DocketError):
    """Network, authentication or protocol failure for one calendar resource."""
