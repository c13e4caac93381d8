"""
TaskPilot thread registry.
"""

from .registry import MemoryThreadStore, ThreadMapping, ThreadRegistry, ThreadRepository, ThreadStore

__all__ = [
    "ThreadMapping",
    "ThreadStore",
    "MemoryThreadStore",
    "ThreadRepository",
    "ThreadRegistry",
]
