"""
Tool call routing policy.

Agent tool calls are parsed into a closed set of action types (one per
tool, plus ``UnknownAction``), then classified:

- ``Decision.EXECUTE`` -- run now against the task service
- ``Decision.DEFER``   -- persist as a pending approval, ask the user

Base rules:
    create_task           execute iff the title is non-empty
    update_task           execute iff a task id is present
    delete_task           always defer
    get_tasks             always execute
    analyze_productivity  always execute
    anything else         defer

``ToolPolicy`` adds a configurable always-confirm list on top, which can
only turn EXECUTE into DEFER, never the reverse.

Usage::

    policy = ToolPolicy(always_confirm={"update_task"})
    action = parse_action(call.name, call.arguments)
    if policy.classify(action) is Decision.EXECUTE:
        ...
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Optional, Set, Union

from ..constants import (
    ANALYZE_PRODUCTIVITY, CREATE_TASK, DELETE_TASK, GET_TASKS, UPDATE_TASK,
)


class Decision(str, Enum):
    EXECUTE = "execute"
    DEFER = "defer"


# ── Actions ──

@dataclass(frozen=True)
class CreateTask:
    name: ClassVar[str] = CREATE_TASK
    title: str = ""
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None


@dataclass(frozen=True)
class UpdateTask:
    name: ClassVar[str] = UPDATE_TASK
    task_id: str = ""
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    completed: Optional[bool] = None


@dataclass(frozen=True)
class DeleteTask:
    name: ClassVar[str] = DELETE_TASK
    task_id: str = ""


@dataclass(frozen=True)
class ListTasks:
    name: ClassVar[str] = GET_TASKS
    priority: Optional[str] = None
    completed: Optional[bool] = None
    due_before: Optional[str] = None
    due_after: Optional[str] = None


@dataclass(frozen=True)
class AnalyzeProductivity:
    name: ClassVar[str] = ANALYZE_PRODUCTIVITY
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass(frozen=True)
class UnknownAction:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


Action = Union[CreateTask, UpdateTask, DeleteTask, ListTasks, AnalyzeProductivity, UnknownAction]


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _flag(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


def parse_action(name: str, arguments: Optional[Dict[str, Any]]) -> Action:
    """Build the action for a tool call. Missing fields stay empty."""
    args = arguments if isinstance(arguments, dict) else {}

    if name == CREATE_TASK:
        return CreateTask(
            title=_text(args.get("title")) or "",
            description=_text(args.get("description")),
            priority=_text(args.get("priority")),
            due_date=_text(args.get("dueDate")),
        )
    if name == UPDATE_TASK:
        return UpdateTask(
            task_id=_text(args.get("taskId")) or "",
            title=_text(args.get("title")),
            description=_text(args.get("description")),
            priority=_text(args.get("priority")),
            due_date=_text(args.get("dueDate")),
            completed=_flag(args.get("completed")),
        )
    if name == DELETE_TASK:
        return DeleteTask(task_id=_text(args.get("taskId")) or "")
    if name == GET_TASKS:
        return ListTasks(
            priority=_text(args.get("priority")),
            completed=_flag(args.get("completed")),
            due_before=_text(args.get("dueBefore")),
            due_after=_text(args.get("dueAfter")),
        )
    if name == ANALYZE_PRODUCTIVITY:
        return AnalyzeProductivity(
            start_date=_text(args.get("startDate")),
            end_date=_text(args.get("endDate")),
        )
    return UnknownAction(name=name or "", arguments=dict(args))


# ── Classification ──

def classify(action: Action) -> Decision:
    """Base routing rule; a pure function of the action type and its fields."""
    if isinstance(action, CreateTask):
        return Decision.EXECUTE if action.title.strip() else Decision.DEFER
    if isinstance(action, UpdateTask):
        return Decision.EXECUTE if action.task_id.strip() else Decision.DEFER
    if isinstance(action, (ListTasks, AnalyzeProductivity)):
        return Decision.EXECUTE
    return Decision.DEFER


def _base_reason(action: Action) -> str:
    if isinstance(action, CreateTask):
        return "title present" if action.title.strip() else "title missing"
    if isinstance(action, UpdateTask):
        return "task id present" if action.task_id.strip() else "task id missing"
    if isinstance(action, DeleteTask):
        return "delete_task always requires confirmation"
    if isinstance(action, (ListTasks, AnalyzeProductivity)):
        return "read-only"
    return f"unrecognized tool '{action.name}'"


class ToolPolicy:
    """Base routing rules plus an always-confirm override list."""

    def __init__(self, always_confirm: Optional[Iterable[str]] = None) -> None:
        self._always_confirm: Set[str] = set(always_confirm or ())

    @property
    def always_confirm(self) -> Set[str]:
        return set(self._always_confirm)

    def set_always_confirm(self, tool_names: Iterable[str]) -> None:
        self._always_confirm = set(tool_names)

    def classify(self, action: Action) -> Decision:
        if action.name in self._always_confirm:
            return Decision.DEFER
        return classify(action)

    def get_reason(self, action: Action) -> str:
        """Human-readable reason for the verdict, for audit logs."""
        if action.name in self._always_confirm:
            return f"tool '{action.name}' is in the always-confirm list"
        return _base_reason(action)
