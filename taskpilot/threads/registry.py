"""
TaskPilot Thread Registry - one remote conversation thread per user

- ThreadStore: abstract mapping storage (at most one row per user)
- MemoryThreadStore: in-memory backend for development/testing
- ThreadRepository: Postgres backend over ``assistant_threads``
- ThreadRegistry: lazy get-or-create on top of a store and the agent

Concurrent ``get_or_create`` calls for one user are serialized by a
per-user lock in-process; across processes the store's insert-if-absent
decides the winner and the loser adopts the winning thread.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from ..db.repository import Repository
from ..locks import KeyedLocks
from ..protocols import AgentServiceProtocol
from ..tasks.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ThreadMapping:
    user_id: str
    thread_id: str
    last_used: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)


class ThreadStore(ABC):
    """Abstract user → thread mapping storage."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[ThreadMapping]:
        pass

    @abstractmethod
    async def insert_if_absent(self, user_id: str, thread_id: str) -> ThreadMapping:
        """Store the mapping unless one exists; return whichever mapping is stored."""
        pass

    @abstractmethod
    async def touch(self, user_id: str) -> None:
        """Refresh ``last_used``."""
        pass


class MemoryThreadStore(ThreadStore):
    """In-memory thread store for development/testing"""

    def __init__(self):
        self._rows: Dict[str, ThreadMapping] = {}

    async def get(self, user_id: str) -> Optional[ThreadMapping]:
        return self._rows.get(user_id)

    async def insert_if_absent(self, user_id: str, thread_id: str) -> ThreadMapping:
        if user_id not in self._rows:
            self._rows[user_id] = ThreadMapping(user_id=user_id, thread_id=thread_id)
        return self._rows[user_id]

    async def touch(self, user_id: str) -> None:
        row = self._rows.get(user_id)
        if row is not None:
            row.last_used = utcnow()

    def __len__(self) -> int:
        return len(self._rows)


class ThreadRepository(Repository, ThreadStore):
    """Postgres thread store; ``user_id`` is UNIQUE."""

    TABLE_NAME = "assistant_threads"

    @staticmethod
    def _to_mapping(row) -> ThreadMapping:
        return ThreadMapping(
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            last_used=row["last_used"],
            created_at=row["created_at"],
        )

    async def get(self, user_id: str) -> Optional[ThreadMapping]:
        row = await self.db.fetchrow(
            "SELECT * FROM assistant_threads WHERE user_id = $1", user_id
        )
        return self._to_mapping(row) if row else None

    async def insert_if_absent(self, user_id: str, thread_id: str) -> ThreadMapping:
        await self.db.execute(
            "INSERT INTO assistant_threads (user_id, thread_id) VALUES ($1, $2) "
            "ON CONFLICT (user_id) DO NOTHING",
            user_id,
            thread_id,
        )
        return await self.get(user_id)

    async def touch(self, user_id: str) -> None:
        await self.db.execute(
            "UPDATE assistant_threads SET last_used = NOW() WHERE user_id = $1", user_id
        )


class ThreadRegistry:
    """Resolves a user's remote thread, creating it on first use."""

    def __init__(self, store: ThreadStore, agent: AgentServiceProtocol):
        self.store = store
        self.agent = agent
        self._locks = KeyedLocks()

    async def get_or_create(self, user_id: str) -> str:
        async with self._locks.hold(user_id):
            existing = await self.store.get(user_id)
            if existing is not None:
                await self.store.touch(user_id)
                return existing.thread_id

            logger.info(f"Creating new thread for user {user_id}")
            # A failure here propagates before anything is persisted
            thread_id = await self.agent.create_thread()
            mapping = await self.store.insert_if_absent(user_id, thread_id)

        if mapping.thread_id != thread_id:
            logger.warning(
                f"Thread {thread_id} for user {user_id} lost the insert race; "
                f"using {mapping.thread_id}, remote thread left orphaned"
            )
        return mapping.thread_id

    async def lookup(self, user_id: str) -> Optional[str]:
        """Existing thread id without creating one."""
        mapping = await self.store.get(user_id)
        return mapping.thread_id if mapping else None
