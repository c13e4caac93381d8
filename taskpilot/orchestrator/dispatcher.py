"""
Action dispatcher - the single path from an agent action to the task service.

Used both for auto-executed tool calls and for approved pending calls, so
pattern tracking and memory recording happen the same way on both paths.
"""

import logging
import time
from typing import Any, Optional

from ..errors import UnknownActionError
from ..protocols import TaskServiceProtocol
from .audit_logger import AuditLogger, summarize_args
from .tool_policy import (
    Action, AnalyzeProductivity, CreateTask, DeleteTask, ListTasks, UpdateTask,
)

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Executes actions for a user and applies their side effects.

    Args:
        tasks: Task service.
        tracker: Optional PatternTracker; advanced after task creation and
            after an update that newly completes a task. Tracker failures
            are logged and never fail an action whose write succeeded.
        memory: Optional MemoryContextService; receives a best-effort
            record of every successful action.
        audit: Audit logger for execution events.
    """

    def __init__(
        self,
        tasks: TaskServiceProtocol,
        tracker: Optional[Any] = None,
        memory: Optional[Any] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.tasks = tasks
        self.tracker = tracker
        self.memory = memory
        self.audit = audit or AuditLogger()

    async def execute(self, user_id: str, action: Action) -> Any:
        """Run ``action`` and return its JSON-serializable result.

        Raises whatever the task service raises (NotFoundError, ValueError)
        and UnknownActionError for actions outside the vocabulary.
        """
        start = time.monotonic()
        args_summary = summarize_args(getattr(action, "__dict__", {}))
        try:
            result = await self._run(user_id, action)
        except Exception as e:
            self.audit.log_tool_execution(
                user_id, action.name, args_summary, False, _elapsed_ms(start), error=str(e)
            )
            raise
        self.audit.log_tool_execution(user_id, action.name, args_summary, True, _elapsed_ms(start))
        await self._remember(user_id, action)
        return result

    async def _run(self, user_id: str, action: Action) -> Any:
        if isinstance(action, CreateTask):
            task = await self.tasks.create_task(
                user_id,
                action.title,
                description=action.description,
                priority=action.priority,
                due_date=action.due_date,
            )
            await self._track(user_id, "on_task_created", task)
            return task.to_dict()

        if isinstance(action, UpdateTask):
            update = await self.tasks.update_task(
                user_id,
                action.task_id,
                title=action.title,
                description=action.description,
                priority=action.priority,
                due_date=action.due_date,
                completed=action.completed,
            )
            if update.newly_completed:
                await self._track(
                    user_id, "on_task_completed", update.task, update.task.completed_at
                )
            return update.task.to_dict()

        if isinstance(action, DeleteTask):
            return await self.tasks.delete_task(user_id, action.task_id)

        if isinstance(action, ListTasks):
            tasks = await self.tasks.list_tasks(
                user_id,
                priority=action.priority,
                completed=action.completed,
                due_before=action.due_before,
                due_after=action.due_after,
            )
            return [t.to_dict() for t in tasks]

        if isinstance(action, AnalyzeProductivity):
            return await self.tasks.analyze_productivity(
                user_id, start_date=action.start_date, end_date=action.end_date
            )

        raise UnknownActionError(action.name)

    async def _track(self, user_id: str, event: str, *args: Any) -> None:
        # The task is already written; a lost pattern update must not undo it
        if self.tracker is None:
            return
        try:
            await getattr(self.tracker, event)(user_id, *args)
        except Exception as e:
            logger.warning(f"Pattern tracker {event} failed for {user_id}: {e}")

    async def _remember(self, user_id: str, action: Action) -> None:
        if self.memory is None or isinstance(action, (ListTasks, AnalyzeProductivity)):
            return
        try:
            await self.memory.record_user_action(user_id, action.name, dict(action.__dict__))
        except Exception as e:
            logger.warning(f"Failed to record action {action.name} for {user_id}: {e}")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
