"""
TaskPilot Memory Context Service

Builds the free-text context handed to the agent as extra instructions on
every run, and records what the user does so later contexts can use it.
Context generation never raises: on any failure it logs and returns "".
"""

import json
import logging
from typing import Any, Optional

from ..locks import KeyedLocks
from ..tasks.models import utcnow
from ..tasks.repository import TaskStore
from .models import PROFILE_FIELDS, UserMemory
from .store import UserMemoryStore

logger = logging.getLogger(__name__)

RECENT_TASK_LIMIT = 10
MEMORY_TEXT_LIMIT = 1000


class MemoryContextService:
    """Implements MemoryContextProtocol over user memory, tasks and patterns."""

    def __init__(
        self,
        store: UserMemoryStore,
        tasks: TaskStore,
        patterns: Optional[Any] = None,
    ):
        self.store = store
        self.tasks = tasks
        self.patterns = patterns
        self._locks = KeyedLocks()

    async def generate_context(self, user_id: str) -> str:
        try:
            return await self._build_context(user_id)
        except Exception as e:
            logger.warning(f"Error generating assistant context for {user_id}: {e}")
            return ""

    async def _build_context(self, user_id: str) -> str:
        memory = await self.store.get_or_create(user_id)
        recent = await self.tasks.query(user_id, limit=RECENT_TASK_LIMIT)

        sections = ["## User Profile"]
        for key, label in PROFILE_FIELDS:
            if memory.profile.get(key):
                sections.append(f"{label}: {memory.profile[key]}")

        sections.append("\n## Recent Tasks")
        for task in recent:
            state = "completed" if task.completed else "active"
            sections.append(f"- {task.title} ({task.priority} priority, {state})")

        if memory.task_preferences:
            sections.append("\n## Learned Task Preferences")
            for key, value in memory.task_preferences.items():
                sections.append(f"- {key}: {json.dumps(value, default=str)}")

        if self.patterns is not None:
            snapshot = await self.patterns.get_snapshot(user_id)
            if snapshot.total_created or snapshot.total_completed:
                sections.append("\n## Observed Work Patterns")
                for key, value in snapshot.summary().items():
                    sections.append(f"- {key}: {json.dumps(value)}")

        if memory.memory_text:
            sections.append("\n## Key Memories")
            text = memory.memory_text
            if len(text) > MEMORY_TEXT_LIMIT:
                text = f"...\n{text[-MEMORY_TEXT_LIMIT:]}"
            sections.append(text)

        return "\n".join(sections)

    async def record_user_action(self, user_id: str, action: str, details: Any) -> UserMemory:
        async with self._locks.hold(user_id):
            memory = await self.store.get_or_create(user_id)
            memory.record_action(action, details, utcnow())
            await self.store.save(memory)
        return memory

    async def append_memory(self, user_id: str, text: str) -> UserMemory:
        async with self._locks.hold(user_id):
            memory = await self.store.get_or_create(user_id)
            memory.append_text(text, utcnow())
            await self.store.save(memory)
        return memory

    async def update_profile(self, user_id: str, **fields: Any) -> UserMemory:
        """Merge profile fields (name, work_description, goals, ...)."""
        async with self._locks.hold(user_id):
            memory = await self.store.get_or_create(user_id)
            memory.profile.update({k: v for k, v in fields.items() if v is not None})
            await self.store.save(memory)
        return memory
