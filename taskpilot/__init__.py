"""
TaskPilot - orchestration engine for a conversational task assistant

TaskPilot keeps one remote conversation thread per user, drives the
agent's run protocol (append, run, poll, tool calls, submit), and gates
agent-initiated task mutations through automatic execution or a
human-approval queue.

Key Features:
- Per-user thread registry, safe under concurrent first use
- Run polling with exponential backoff and busy-thread recovery
- Tool routing policy: execute now or defer for the user's consent
- Pending approvals executed at most once
- Incremental work-pattern statistics per user
- Memory context handed to the agent on every run

Quick Start:
    from taskpilot import TaskPilot

    app = TaskPilot("config.yaml")
    reply = await app.chat("user_1", "Create a task to buy milk")
    print(reply.message, reply.executed_functions)

    for call in await app.list_pending("user_1"):
        await app.approve(call["id"], "user_1")

Embedding the coordinator directly:
    coordinator = RunCoordinator(
        agent=OpenAIAgentService(AgentServiceConfig(assistant_id="asst_123")),
        agent_id="asst_123",
        policy=ToolPolicy(),
        approvals=approvals,
        dispatcher=dispatcher,
    )
    reply = await coordinator.deliver(user_id, thread_id, "What's due this week?")
"""

__version__ = "0.1.0"

from .errors import (
    TaskPilotError,
    AgentServiceError,
    ActiveRunError,
    ThreadBusyError,
    RunFailedError,
    RunTimeoutError,
    NotFoundError,
    PreconditionFailedError,
    UnknownActionError,
)

from .agent import (
    AgentServiceConfig,
    OpenAIAgentService,
    Run,
    RunBusy,
    RunStarted,
    RunStatus,
    ToolCall,
    ToolOutput,
)

from .orchestrator import (
    ActionDispatcher,
    AgentReply,
    ApprovalStatus,
    CoordinatorConfig,
    Decision,
    PendingApproval,
    PendingApprovalService,
    RunCoordinator,
    ToolPolicy,
    classify,
    parse_action,
)

from .patterns import PatternTracker, WorkPatternSnapshot
from .tasks import Task, TaskService
from .threads import ThreadRegistry
from .memory import MemoryContextService

from .app import TaskPilot

__all__ = [
    "__version__",
    "TaskPilotError", "AgentServiceError", "ActiveRunError", "ThreadBusyError",
    "RunFailedError", "RunTimeoutError", "NotFoundError",
    "PreconditionFailedError", "UnknownActionError",
    "AgentServiceConfig", "OpenAIAgentService",
    "Run", "RunBusy", "RunStarted", "RunStatus", "ToolCall", "ToolOutput",
    "ActionDispatcher", "AgentReply", "ApprovalStatus", "CoordinatorConfig",
    "Decision", "PendingApproval", "PendingApprovalService", "RunCoordinator",
    "ToolPolicy", "classify", "parse_action",
    "PatternTracker", "WorkPatternSnapshot",
    "Task", "TaskService",
    "ThreadRegistry",
    "MemoryContextService",
    "TaskPilot",
]
