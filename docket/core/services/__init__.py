"""Core service layer modules."""

from .documents import DocumentService
from .tasks import TaskService

__all__ = ["DocumentService", "TaskService"]
