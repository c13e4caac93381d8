"""
Pattern storage and the tracker that advances snapshots on task events.

- PatternStore: abstract read / atomic read-modify-write
- MemoryPatternStore: in-memory backend for development/testing
- WorkPatternRepository: Postgres backend, row locked with FOR UPDATE
- PatternTracker: on_task_created / on_task_completed event handlers
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional

from ..db.repository import Repository
from ..locks import KeyedLocks
from ..tasks.models import Task, utcnow
from .models import WorkPatternSnapshot

logger = logging.getLogger(__name__)

Mutation = Callable[[WorkPatternSnapshot], None]


class PatternStore(ABC):
    """Abstract snapshot storage."""

    @abstractmethod
    async def load(self, user_id: str) -> WorkPatternSnapshot:
        """Current snapshot, or an empty one for a new user."""
        pass

    @abstractmethod
    async def update(self, user_id: str, mutate: Mutation) -> WorkPatternSnapshot:
        """Apply ``mutate`` to the stored snapshot atomically and persist it."""
        pass


class MemoryPatternStore(PatternStore):
    """In-memory snapshot store for development/testing"""

    def __init__(self):
        self._snapshots: Dict[str, WorkPatternSnapshot] = {}

    async def load(self, user_id: str) -> WorkPatternSnapshot:
        return WorkPatternSnapshot.from_dict(
            self._snapshots[user_id].to_dict() if user_id in self._snapshots else None
        )

    async def update(self, user_id: str, mutate: Mutation) -> WorkPatternSnapshot:
        snapshot = self._snapshots.setdefault(user_id, WorkPatternSnapshot())
        mutate(snapshot)
        snapshot.updated_at = utcnow()
        return snapshot


class WorkPatternRepository(Repository, PatternStore):
    """Postgres snapshot store over ``work_patterns`` (one JSONB row per user)."""

    TABLE_NAME = "work_patterns"
    JSON_COLUMNS = ("snapshot",)

    async def load(self, user_id: str) -> WorkPatternSnapshot:
        row = self._decode(await self.db.fetchrow(
            "SELECT snapshot FROM work_patterns WHERE user_id = $1", user_id
        ))
        return WorkPatternSnapshot.from_dict(row["snapshot"] if row else None)

    async def update(self, user_id: str, mutate: Mutation) -> WorkPatternSnapshot:
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO work_patterns (user_id) VALUES ($1) "
                "ON CONFLICT (user_id) DO NOTHING",
                user_id,
            )
            row = self._decode(await conn.fetchrow(
                "SELECT snapshot FROM work_patterns WHERE user_id = $1 FOR UPDATE",
                user_id,
            ))
            snapshot = WorkPatternSnapshot.from_dict(row["snapshot"])
            mutate(snapshot)
            snapshot.updated_at = utcnow()
            await conn.execute(
                "UPDATE work_patterns SET snapshot = $2, updated_at = NOW() "
                "WHERE user_id = $1",
                user_id,
                json.dumps(snapshot.to_dict()),
            )
        return snapshot


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400


class PatternTracker:
    """
    Advances a user's WorkPatternSnapshot on every create/complete event.

    Updates for one user are serialized in-process by a per-user lock; the
    store makes each read-modify-write atomic across processes.
    """

    def __init__(self, store: PatternStore):
        self.store = store
        self._locks = KeyedLocks()

    async def on_task_created(self, user_id: str, task: Task) -> WorkPatternSnapshot:
        async with self._locks.hold(user_id):
            snapshot = await self.store.update(
                user_id,
                lambda s: s.record_created(task.priority, task.has_due_date),
            )
        logger.debug(f"Pattern snapshot for {user_id}: created {task.priority}")
        return snapshot

    async def on_task_completed(
        self,
        user_id: str,
        task: Task,
        completed_at: Optional[datetime] = None,
    ) -> WorkPatternSnapshot:
        days = None
        if task.has_due_date:
            finished = completed_at or task.completed_at or utcnow()
            days = days_between(task.created_at, finished)

        async with self._locks.hold(user_id):
            snapshot = await self.store.update(
                user_id,
                lambda s: s.record_completed(task.priority, days),
            )
        logger.debug(f"Pattern snapshot for {user_id}: completed {task.priority}")
        return snapshot

    async def get_snapshot(self, user_id: str) -> WorkPatternSnapshot:
        return await self.store.load(user_id)
