"""
User memory storage backends.

- UserMemoryStore: abstract get-or-create / save
- InMemoryUserMemoryStore: in-memory backend for development/testing
- UserMemoryRepository: Postgres backend over ``user_memory``
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict

from ..db.repository import Repository
from ..tasks.models import utcnow
from .models import UserMemory

logger = logging.getLogger(__name__)


class UserMemoryStore(ABC):

    @abstractmethod
    async def get_or_create(self, user_id: str) -> UserMemory:
        pass

    @abstractmethod
    async def save(self, memory: UserMemory) -> None:
        pass


class InMemoryUserMemoryStore(UserMemoryStore):
    """In-memory user memory store for development/testing"""

    def __init__(self):
        self._memories: Dict[str, UserMemory] = {}

    async def get_or_create(self, user_id: str) -> UserMemory:
        if user_id not in self._memories:
            self._memories[user_id] = UserMemory(user_id=user_id)
        return copy.deepcopy(self._memories[user_id])

    async def save(self, memory: UserMemory) -> None:
        memory.updated_at = utcnow()
        self._memories[memory.user_id] = copy.deepcopy(memory)


class UserMemoryRepository(Repository, UserMemoryStore):
    """Postgres user memory store."""

    TABLE_NAME = "user_memory"
    JSON_COLUMNS = ("profile", "task_preferences", "interaction_history")

    async def get_or_create(self, user_id: str) -> UserMemory:
        await self.db.execute(
            "INSERT INTO user_memory (user_id) VALUES ($1) ON CONFLICT (user_id) DO NOTHING",
            user_id,
        )
        row = await self.db.fetchrow("SELECT * FROM user_memory WHERE user_id = $1", user_id)
        return UserMemory.from_row(self._decode(row))

    async def save(self, memory: UserMemory) -> None:
        data = self._encode({
            "profile": memory.profile,
            "task_preferences": memory.task_preferences,
            "interaction_history": memory.interaction_history,
        })
        await self.db.execute(
            """
            INSERT INTO user_memory
                (user_id, profile, task_preferences, interaction_history, memory_text)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id) DO UPDATE SET
                profile = EXCLUDED.profile,
                task_preferences = EXCLUDED.task_preferences,
                interaction_history = EXCLUDED.interaction_history,
                memory_text = EXCLUDED.memory_text,
                updated_at = NOW()
            """,
            memory.user_id,
            data["profile"],
            data["task_preferences"],
            data["interaction_history"],
            memory.memory_text,
        )
