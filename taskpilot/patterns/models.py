"""
Work pattern snapshot and the incremental statistics it is built from.

The snapshot is only ever advanced one event at a time; nothing here reads
the task table. ``running_average`` and ``combine_averages`` are pure so
the fold can be checked without any store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..constants import PRIORITIES


def running_average(average: float, count: int, sample: float) -> Tuple[float, int]:
    """Fold one sample into an ``(average, count)`` pair."""
    new_count = count + 1
    return (average * count + sample) / new_count, new_count


def combine_averages(a: Tuple[float, int], b: Tuple[float, int]) -> Tuple[float, int]:
    """Merge two ``(average, count)`` pairs. Associative, identity ``(0.0, 0)``."""
    avg_a, count_a = a
    avg_b, count_b = b
    total = count_a + count_b
    if total == 0:
        return 0.0, 0
    return (avg_a * count_a + avg_b * count_b) / total, total


def completion_rate(completed: int, created: int) -> float:
    """``completed / created * 100`` to one decimal; 0 when nothing was created."""
    if created <= 0:
        return 0.0
    return round(completed / created * 100, 1)


def _zero_counts() -> Dict[str, int]:
    return {p: 0 for p in PRIORITIES}


@dataclass
class WorkPatternSnapshot:
    """Per-user aggregate of task creation and completion behaviour."""
    created_by_priority: Dict[str, int] = field(default_factory=_zero_counts)
    completed_by_priority: Dict[str, int] = field(default_factory=_zero_counts)
    with_due_date: int = 0
    without_due_date: int = 0
    avg_days_to_complete: float = 0.0
    completion_count: int = 0
    completion_rate: float = 0.0
    completion_rate_by_priority: Dict[str, float] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.completion_rate_by_priority:
            self.recompute_rates()

    @property
    def total_created(self) -> int:
        return sum(self.created_by_priority.values())

    @property
    def total_completed(self) -> int:
        return sum(self.completed_by_priority.values())

    def record_created(self, priority: str, has_due_date: bool) -> None:
        self.created_by_priority[priority] = self.created_by_priority.get(priority, 0) + 1
        if has_due_date:
            self.with_due_date += 1
        else:
            self.without_due_date += 1
        self.recompute_rates()

    def record_completed(self, priority: str, days_to_complete: Optional[float] = None) -> None:
        """Count a completion; ``days_to_complete`` is given only for due-dated tasks."""
        self.completed_by_priority[priority] = self.completed_by_priority.get(priority, 0) + 1
        if days_to_complete is not None:
            self.avg_days_to_complete, self.completion_count = running_average(
                self.avg_days_to_complete, self.completion_count, days_to_complete
            )
        self.recompute_rates()

    def recompute_rates(self) -> None:
        keys = set(self.created_by_priority) | set(self.completed_by_priority)
        self.completion_rate_by_priority = {
            p: completion_rate(
                self.completed_by_priority.get(p, 0),
                self.created_by_priority.get(p, 0),
            )
            for p in sorted(keys)
        }
        self.completion_rate = completion_rate(self.total_completed, self.total_created)

    def summary(self) -> Dict[str, Any]:
        """Derived figures, shaped for tool outputs."""
        return {
            "completionRate": self.completion_rate,
            "completionRateByPriority": dict(self.completion_rate_by_priority),
            "avgDaysToComplete": round(self.avg_days_to_complete, 2),
            "tasksWithDueDate": self.with_due_date,
            "tasksWithoutDueDate": self.without_due_date,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_by_priority": dict(self.created_by_priority),
            "completed_by_priority": dict(self.completed_by_priority),
            "with_due_date": self.with_due_date,
            "without_due_date": self.without_due_date,
            "avg_days_to_complete": self.avg_days_to_complete,
            "completion_count": self.completion_count,
            "completion_rate": self.completion_rate,
            "completion_rate_by_priority": dict(self.completion_rate_by_priority),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkPatternSnapshot":
        if not data:
            return cls()
        updated_at = data.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)
        snapshot = cls(
            created_by_priority={**_zero_counts(), **data.get("created_by_priority", {})},
            completed_by_priority={**_zero_counts(), **data.get("completed_by_priority", {})},
            with_due_date=data.get("with_due_date", 0),
            without_due_date=data.get("without_due_date", 0),
            avg_days_to_complete=data.get("avg_days_to_complete", 0.0),
            completion_count=data.get("completion_count", 0),
            updated_at=updated_at,
        )
        snapshot.recompute_rates()
        return snapshot
