"""User memory record."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

MAX_ACTIONS = 50

# Profile keys rendered into the context, with their labels
PROFILE_FIELDS = (
    ("name", "Name"),
    ("work_description", "Work"),
    ("short_term_goals", "Short-term goals"),
    ("long_term_goals", "Long-term goals"),
    ("other_context", "Other context"),
)


@dataclass
class UserMemory:
    """What the assistant remembers about one user."""
    user_id: str
    profile: Dict[str, Any] = field(default_factory=dict)
    task_preferences: Dict[str, Any] = field(default_factory=dict)
    interaction_history: List[Dict[str, Any]] = field(default_factory=list)
    memory_text: Optional[str] = None
    updated_at: Optional[datetime] = None

    def record_action(self, action: str, details: Any, timestamp: datetime) -> None:
        """Prepend an action, keeping the newest ``MAX_ACTIONS``."""
        entry = {"timestamp": timestamp.isoformat(), "action": action, "details": details}
        self.interaction_history = [entry] + self.interaction_history[: MAX_ACTIONS - 1]

    def append_text(self, text: str, timestamp: datetime) -> None:
        paragraph = f"{timestamp.isoformat()}: {text}"
        self.memory_text = f"{self.memory_text}\n\n{paragraph}" if self.memory_text else paragraph

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserMemory":
        return cls(
            user_id=row["user_id"],
            profile=row.get("profile") or {},
            task_preferences=row.get("task_preferences") or {},
            interaction_history=row.get("interaction_history") or [],
            memory_text=row.get("memory_text"),
            updated_at=row.get("updated_at"),
        )
