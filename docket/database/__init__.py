"""Database layer - SQLite wrapper for tasks, identity maps and sync state."""

from .sqlite import TaskDB

__all__ = ["TaskDB"]
