"""
TaskPilot orchestrator - run coordination, tool routing and approvals.
"""

from .approval import (
    ApprovalStatus,
    ApprovalStore,
    MemoryApprovalStore,
    PendingApproval,
    PendingApprovalRepository,
    PendingApprovalService,
)
from .audit_logger import AuditLogger
from .coordinator import RunCoordinator
from .dispatcher import ActionDispatcher
from .models import AgentReply, CoordinatorConfig
from .tool_policy import (
    Action,
    AnalyzeProductivity,
    CreateTask,
    Decision,
    DeleteTask,
    ListTasks,
    ToolPolicy,
    UnknownAction,
    UpdateTask,
    classify,
    parse_action,
)

__all__ = [
    "ApprovalStatus",
    "ApprovalStore",
    "MemoryApprovalStore",
    "PendingApproval",
    "PendingApprovalRepository",
    "PendingApprovalService",
    "AuditLogger",
    "RunCoordinator",
    "ActionDispatcher",
    "AgentReply",
    "CoordinatorConfig",
    "Action",
    "AnalyzeProductivity",
    "CreateTask",
    "Decision",
    "DeleteTask",
    "ListTasks",
    "ToolPolicy",
    "UnknownAction",
    "UpdateTask",
    "classify",
    "parse_action",
]
