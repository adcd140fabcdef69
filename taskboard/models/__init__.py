"""Taskboard models - re-exports all models and Base.metadata."""

from .base import Base, CuidMixin, TimestampMixin, new_cuid
from .task import Task, TaskPriority, TaskStatus

__all__ = [
    "Base",
    "CuidMixin",
    "TimestampMixin",
    "new_cuid",
    "Task",
    "TaskPriority",
    "TaskStatus",
]
