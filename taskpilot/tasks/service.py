"""
TaskPilot Task Service - user-scoped task mutation and analytics

This is the Task Mutation collaborator the dispatcher executes agent
actions against. Every operation takes the owning ``user_id``; update and
delete raise ``NotFoundError`` for tasks owned by someone else.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from ..constants import DEFAULT_PRIORITY, PRIORITIES, PRIORITY_HIGH
from ..errors import NotFoundError
from .models import Task, TaskUpdate, utcnow
from .repository import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_DAYS = 30

DateInput = Union[str, datetime, None]


def parse_date(value: DateInput) -> Optional[datetime]:
    """Parse an ISO-ish date string into an aware UTC datetime.

    Naive values are taken to be UTC. Empty input yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        from dateutil import parser
        try:
            parsed = parser.parse(value)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid date: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_priority(priority: Optional[str]) -> None:
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"Invalid priority: {priority} (expected one of {', '.join(PRIORITIES)})")


class TaskService:
    """Task CRUD plus the productivity analysis exposed to the agent."""

    def __init__(self, store: TaskStore, patterns: Any = None):
        """
        Args:
            store: Task storage backend.
            patterns: Optional object with ``async get_snapshot(user_id)``;
                its derived rates are attached to productivity analyses.
        """
        self.store = store
        self.patterns = patterns

    async def create_task(
        self,
        user_id: str,
        title: str,
        description: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: DateInput = None,
        ai_generated: bool = True,
    ) -> Task:
        if not title or not title.strip():
            raise ValueError("Task title is required")
        priority = priority or DEFAULT_PRIORITY
        _check_priority(priority)

        logger.info(f"Creating task for user {user_id}: {title}")
        task = await self.store.insert(
            user_id=user_id,
            title=title.strip(),
            description=description or None,
            priority=priority,
            due_date=parse_date(due_date),
            is_ai_generated=ai_generated,
        )
        logger.info(f"Task created with ID: {task.id}")
        return task

    async def get_task(self, user_id: str, task_id: str) -> Task:
        task = await self.store.get(user_id, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found or doesn't belong to user")
        return task

    async def update_task(
        self,
        user_id: str,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: DateInput = None,
        completed: Optional[bool] = None,
    ) -> TaskUpdate:
        """Update the given fields; ``None`` means "leave unchanged".

        ``newly_completed`` is set when this update moved the task from open
        to completed, which is the only transition that stamps
        ``completed_at``.
        """
        logger.info(f"Updating task {task_id} for user {user_id}")
        existing = await self.get_task(user_id, task_id)
        _check_priority(priority)

        fields: Dict[str, Any] = {}
        if title is not None:
            fields["title"] = title
        if description is not None:
            fields["description"] = description
        if priority is not None:
            fields["priority"] = priority
        if due_date is not None:
            fields["due_date"] = parse_date(due_date)

        if completed is None or completed == existing.completed:
            task = await self.store.update(user_id, task_id, fields)
            if task is None:
                # Deleted between the ownership check and the write
                raise NotFoundError(f"Task {task_id} not found or doesn't belong to user")
            logger.info(f"Task {task_id} updated")
            return TaskUpdate(task=task)

        # Flip completion only if nobody else flipped it since the read
        flip = dict(fields, completed=completed, completed_at=utcnow() if completed else None)
        task = await self.store.update(
            user_id, task_id, flip, expect={"completed": existing.completed}
        )
        if task is not None:
            logger.info(f"Task {task_id} updated")
            return TaskUpdate(task=task, newly_completed=bool(completed))

        logger.info(f"Task {task_id} completion already changed by a concurrent update")
        task = await self.store.update(user_id, task_id, fields)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found or doesn't belong to user")
        return TaskUpdate(task=task)

    async def delete_task(self, user_id: str, task_id: str) -> Dict[str, Any]:
        logger.info(f"Deleting task {task_id} for user {user_id}")
        if not await self.store.delete(user_id, task_id):
            raise NotFoundError(f"Task {task_id} not found or doesn't belong to user")
        logger.info(f"Task {task_id} deleted")
        return {"success": True, "message": f"Task {task_id} deleted successfully"}

    async def list_tasks(
        self,
        user_id: str,
        priority: Optional[str] = None,
        completed: Optional[bool] = None,
        due_before: DateInput = None,
        due_after: DateInput = None,
        limit: Optional[int] = None,
    ) -> List[Task]:
        _check_priority(priority)
        tasks = await self.store.query(
            user_id,
            priority=priority,
            completed=completed,
            due_before=parse_date(due_before),
            due_after=parse_date(due_after),
            limit=limit,
        )
        logger.info(f"Found {len(tasks)} tasks for user {user_id}")
        return tasks

    async def analyze_productivity(
        self,
        user_id: str,
        start_date: DateInput = None,
        end_date: DateInput = None,
    ) -> Dict[str, Any]:
        """Summarize task throughput over a window (default: last 30 days)."""
        logger.info(f"Analyzing productivity for user {user_id}")
        now = utcnow()
        start = parse_date(start_date) or now - timedelta(days=DEFAULT_ANALYSIS_DAYS)
        end = parse_date(end_date) or now

        in_window = await self.store.query(user_id, created_after=start, created_before=end)
        completed = [t for t in in_window if t.completed]
        incomplete = [t for t in in_window if not t.completed]
        open_tasks = await self.store.query(user_id, completed=False)
        overdue = [t for t in open_tasks if t.due_date is not None and t.due_date < now]

        total = len(in_window)
        rate = (len(completed) / total) * 100 if total else 0.0

        by_priority = {p: sum(1 for t in completed if t.priority == p) for p in PRIORITIES}

        durations = [
            (t.completed_at - t.created_at).total_seconds() / 86400
            for t in completed
            if t.due_date is not None and t.completed_at is not None
        ]
        avg_days = sum(durations) / len(durations) if durations else 0.0

        result: Dict[str, Any] = {
            "period": {
                "startDate": start.date().isoformat(),
                "endDate": end.date().isoformat(),
            },
            "summary": {
                "totalTasks": total,
                "completedTasks": len(completed),
                "incompleteTasks": len(incomplete),
                "overdueTasks": len(overdue),
                "completionRate": f"{rate:.2f}%",
            },
            "details": {
                "completedByPriority": by_priority,
                "avgCompletionTime": f"{avg_days:.2f} days",
            },
            "recommendations": recommendations(incomplete, overdue, rate),
        }

        if self.patterns is not None:
            snapshot = await self.patterns.get_snapshot(user_id)
            result["patterns"] = snapshot.summary()
        return result


def recommendations(incomplete: List[Task], overdue: List[Task], rate: float) -> List[str]:
    """Rule-based productivity advice."""
    advice = []
    if rate < 50:
        advice.append(
            "Your task completion rate is below 50%. Consider breaking down "
            "tasks into smaller, more manageable items."
        )
    if overdue:
        advice.append(
            f"You have {len(overdue)} overdue tasks. Consider reviewing and "
            "rescheduling these tasks."
        )
        if len(overdue) > 5:
            advice.append(
                "You have a high number of overdue tasks. Try focusing on "
                "completing these before adding new tasks."
            )
    high_open = sum(1 for t in incomplete if t.priority == PRIORITY_HIGH)
    if high_open:
        advice.append(
            f"You have {high_open} high priority tasks incomplete. Consider "
            "focusing on these first."
        )
    if rate > 80:
        advice.append(
            "Great job on your high completion rate! Consider taking on more "
            "challenging tasks."
        )
    return advice
