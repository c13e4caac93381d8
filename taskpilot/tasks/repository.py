"""
Task storage backends.

- TaskStore: abstract interface, always scoped by user id
- MemoryTaskStore: in-memory backend for development/testing
- TaskRepository: Postgres backend over the ``todos`` table
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..db.repository import Repository
from .models import Task, utcnow

logger = logging.getLogger(__name__)

_UPDATABLE = ("title", "description", "priority", "due_date", "completed", "completed_at")


class TaskStore(ABC):
    """Abstract task storage. Every method is scoped by ``user_id``."""

    @abstractmethod
    async def insert(
        self,
        user_id: str,
        title: str,
        description: Optional[str],
        priority: str,
        due_date: Optional[datetime],
        is_ai_generated: bool,
    ) -> Task:
        pass

    @abstractmethod
    async def get(self, user_id: str, task_id: str) -> Optional[Task]:
        """Return the task only if it belongs to ``user_id``."""
        pass

    @abstractmethod
    async def update(
        self,
        user_id: str,
        task_id: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> Optional[Task]:
        """Apply ``fields``; None when the task is missing or not owned.

        With ``expect``, the write happens only while each named field still
        holds the given value, and None is returned otherwise.
        """
        pass

    @abstractmethod
    async def delete(self, user_id: str, task_id: str) -> bool:
        pass

    @abstractmethod
    async def query(
        self,
        user_id: str,
        priority: Optional[str] = None,
        completed: Optional[bool] = None,
        due_before: Optional[datetime] = None,
        due_after: Optional[datetime] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """Tasks matching all given filters, newest first."""
        pass


class MemoryTaskStore(TaskStore):
    """In-memory task store for development/testing"""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}

    async def insert(self, user_id, title, description, priority, due_date, is_ai_generated) -> Task:
        task = Task(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            is_ai_generated=is_ai_generated,
        )
        self._tasks[task.id] = task
        return task

    async def get(self, user_id: str, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None or task.user_id != user_id:
            return None
        return task

    async def update(self, user_id, task_id, fields, expect=None) -> Optional[Task]:
        task = await self.get(user_id, task_id)
        if task is None:
            return None
        if any(getattr(task, k) != v for k, v in (expect or {}).items()):
            return None
        for key, value in fields.items():
            if key in _UPDATABLE:
                setattr(task, key, value)
        task.updated_at = utcnow()
        return task

    async def delete(self, user_id: str, task_id: str) -> bool:
        if await self.get(user_id, task_id) is None:
            return False
        del self._tasks[task_id]
        return True

    async def query(
        self,
        user_id,
        priority=None,
        completed=None,
        due_before=None,
        due_after=None,
        created_after=None,
        created_before=None,
        limit=None,
    ) -> List[Task]:
        result = []
        for task in self._tasks.values():
            if task.user_id != user_id:
                continue
            if priority is not None and task.priority != priority:
                continue
            if completed is not None and task.completed != completed:
                continue
            if due_before is not None and (task.due_date is None or task.due_date > due_before):
                continue
            if due_after is not None and (task.due_date is None or task.due_date < due_after):
                continue
            if created_after is not None and task.created_at < created_after:
                continue
            if created_before is not None and task.created_at > created_before:
                continue
            result.append(task)
        result.sort(key=lambda t: t.created_at, reverse=True)
        return result[:limit] if limit else result


class TaskRepository(Repository, TaskStore):
    """Postgres task store over the ``todos`` table."""

    TABLE_NAME = "todos"

    async def insert(self, user_id, title, description, priority, due_date, is_ai_generated) -> Task:
        row = await self._insert({
            "user_id": user_id,
            "title": title,
            "description": description,
            "priority": priority,
            "due_date": due_date,
            "is_ai_generated": is_ai_generated,
        })
        return Task.from_row(row)

    async def get(self, user_id: str, task_id: str) -> Optional[Task]:
        try:
            uid = uuid.UUID(str(task_id))
        except ValueError:
            return None
        row = await self.db.fetchrow(
            "SELECT * FROM todos WHERE id = $1 AND user_id = $2", uid, user_id
        )
        return Task.from_row(dict(row)) if row else None

    async def update(self, user_id, task_id, fields, expect=None) -> Optional[Task]:
        try:
            uid = uuid.UUID(str(task_id))
        except ValueError:
            return None
        data = {k: v for k, v in fields.items() if k in _UPDATABLE}
        data["updated_at"] = utcnow()
        row = await self._update_owned(uid, user_id, data, expect=expect)
        return Task.from_row(row) if row else None

    async def delete(self, user_id: str, task_id: str) -> bool:
        try:
            uid = uuid.UUID(str(task_id))
        except ValueError:
            return False
        return await self._delete_owned(uid, user_id)

    async def query(
        self,
        user_id,
        priority=None,
        completed=None,
        due_before=None,
        due_after=None,
        created_after=None,
        created_before=None,
        limit=None,
    ) -> List[Task]:
        conditions = ["user_id = $1"]
        args: List[Any] = [user_id]
        idx = 2

        for clause, value in (
            ("priority = ${}", priority),
            ("completed = ${}", completed),
            ("due_date <= ${}", due_before),
            ("due_date >= ${}", due_after),
            ("created_at >= ${}", created_after),
            ("created_at <= ${}", created_before),
        ):
            if value is not None:
                conditions.append(clause.format(idx))
                args.append(value)
                idx += 1

        rows = await self._fetch_many(
            where=" AND ".join(conditions),
            args=tuple(args),
            order_by="created_at DESC",
            limit=limit,
        )
        return [Task.from_row(r) for r in rows]
