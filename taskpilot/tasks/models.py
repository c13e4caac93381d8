"""Task entity."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..constants import DEFAULT_PRIORITY


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Task:
    """A user's todo item."""
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    priority: str = DEFAULT_PRIORITY
    due_date: Optional[datetime] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    is_ai_generated: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_due_date(self) -> bool:
        return self.due_date is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for tool outputs (camelCase, matching the tool schemas)."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "completed": self.completed,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "isAIGenerated": self.is_ai_generated,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Task":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            title=row["title"],
            description=row.get("description"),
            priority=row.get("priority") or DEFAULT_PRIORITY,
            due_date=row.get("due_date"),
            completed=bool(row.get("completed")),
            completed_at=row.get("completed_at"),
            is_ai_generated=bool(row.get("is_ai_generated")),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )


@dataclass
class TaskUpdate:
    """Result of an update: the new task and whether it just became completed."""
    task: Task
    newly_completed: bool = False
