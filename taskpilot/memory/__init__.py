"""
TaskPilot user memory - context generation for the remote agent.
"""

from .context import MemoryContextService
from .models import UserMemory
from .store import InMemoryUserMemoryStore, UserMemoryRepository, UserMemoryStore

__all__ = [
    "UserMemory",
    "UserMemoryStore",
    "InMemoryUserMemoryStore",
    "UserMemoryRepository",
    "MemoryContextService",
]
