"""
TaskPilot tasks - the Task Mutation collaborator.
"""

from .models import Task, TaskUpdate
from .repository import MemoryTaskStore, TaskRepository, TaskStore
from .service import TaskService, parse_date

__all__ = [
    "Task",
    "TaskUpdate",
    "TaskStore",
    "MemoryTaskStore",
    "TaskRepository",
    "TaskService",
    "parse_date",
]
