"""
TaskPilot work patterns - incremental per-user task statistics.
"""

from .models import WorkPatternSnapshot, combine_averages, completion_rate, running_average
from .tracker import MemoryPatternStore, PatternStore, PatternTracker, WorkPatternRepository

__all__ = [
    "WorkPatternSnapshot",
    "running_average",
    "combine_averages",
    "completion_rate",
    "PatternStore",
    "MemoryPatternStore",
    "WorkPatternRepository",
    "PatternTracker",
]
