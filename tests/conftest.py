"""Shared fixtures: a scripted in-memory agent and wired-up in-memory services.

FakeAgentService behaves like the remote agent where it matters to the
coordinator: it enforces one active run per thread, rejecting
``append_message`` with ActiveRunError and ``create_run`` with RunBusy
while a run on the thread is unfinished.
"""

import asyncio
import itertools
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from taskpilot.agent.models import (
    AgentMessage, Run, RunBusy, RunStarted, RunStatus, ToolCall, ToolOutput,
)
from taskpilot.errors import ActiveRunError, AgentServiceError
from taskpilot.memory import InMemoryUserMemoryStore, MemoryContextService
from taskpilot.orchestrator import (
    ActionDispatcher, CoordinatorConfig, MemoryApprovalStore,
    PendingApprovalService, RunCoordinator, ToolPolicy,
)
from taskpilot.patterns import MemoryPatternStore, PatternTracker
from taskpilot.tasks import MemoryTaskStore, TaskService
from taskpilot.threads import MemoryThreadStore, ThreadRegistry


def tool_call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCall:
    return ToolCall.from_raw(call_id, name, json.dumps(arguments))


@dataclass
class RunScript:
    """How a scripted run evolves.

    Each ``get_run`` moves to the next step; a list of ToolCalls is a
    ``requires_action`` step that only ``submit_tool_outputs`` leaves.
    The last step is sticky.
    """
    steps: List[Any] = field(default_factory=lambda: ["in_progress", "completed"])
    reply: str = "OK"


@dataclass
class _ScriptedRun:
    run: Run
    script: RunScript
    index: int = -1


class FakeAgentService:
    """In-memory stand-in for the remote agent."""

    def __init__(self):
        self.messages: Dict[str, List[AgentMessage]] = {}
        self.runs: Dict[str, _ScriptedRun] = {}
        self.run_order: Dict[str, List[str]] = {}
        self.scripts: deque = deque()
        self.submitted: List[tuple] = []
        self.run_instructions: List[Optional[str]] = []
        self.get_run_calls = 0
        self.create_thread_calls = 0
        self.max_active_runs = 0
        self.fail_create_thread = False
        self.after_append: Optional[Callable[[str], None]] = None
        self._ids = itertools.count(1)

    # ── Scripting helpers ──

    def queue(self, *scripts: RunScript) -> None:
        self.scripts.extend(scripts)

    def start_run(self, thread_id: str, script: Optional[RunScript] = None) -> str:
        """Start a run directly, as another request would."""
        run_id = f"run_{next(self._ids)}"
        run = Run(id=run_id, thread_id=thread_id, status=RunStatus.QUEUED)
        self.runs[run_id] = _ScriptedRun(run=run, script=script or RunScript())
        self.run_order.setdefault(thread_id, []).append(run_id)
        self.max_active_runs = max(self.max_active_runs, len(self.active_runs(thread_id)))
        return run_id

    def active_runs(self, thread_id: str) -> List[str]:
        return [
            rid for rid in self.run_order.get(thread_id, [])
            if not self.runs[rid].run.is_terminal
        ]

    def user_messages(self, thread_id: str) -> List[str]:
        return [m.text for m in self.messages.get(thread_id, []) if m.role == "user"]

    def _apply(self, entry: _ScriptedRun) -> None:
        step = entry.script.steps[entry.index]
        if isinstance(step, list):
            entry.run.status = RunStatus.REQUIRES_ACTION
            entry.run.tool_calls = list(step)
        else:
            entry.run.status = RunStatus(step)
            entry.run.tool_calls = []
        if entry.run.status == RunStatus.COMPLETED:
            self._say(entry.run.thread_id, "assistant", entry.script.reply)

    def _say(self, thread_id: str, role: str, text: str) -> None:
        message = AgentMessage(id=f"msg_{next(self._ids)}", role=role, text=text)
        self.messages.setdefault(thread_id, []).append(message)

    @staticmethod
    def _copy(run: Run) -> Run:
        return Run(
            id=run.id,
            thread_id=run.thread_id,
            status=run.status,
            tool_calls=list(run.tool_calls),
            last_error=run.last_error,
        )

    # ── AgentServiceProtocol ──

    async def create_thread(self) -> str:
        self.create_thread_calls += 1
        await asyncio.sleep(0)
        if self.fail_create_thread:
            raise AgentServiceError("Agent service create_thread failed: boom")
        thread_id = f"thread_{next(self._ids)}"
        self.messages[thread_id] = []
        return thread_id

    async def list_recent_runs(self, thread_id: str, limit: int = 1) -> List[Run]:
        ids = list(reversed(self.run_order.get(thread_id, [])))[:limit]
        return [self._copy(self.runs[rid].run) for rid in ids]

    async def append_message(self, thread_id: str, role: str, content: str) -> None:
        active = self.active_runs(thread_id)
        if active:
            raise ActiveRunError(active[0])
        self._say(thread_id, role, content)
        if self.after_append is not None:
            hook, self.after_append = self.after_append, None
            hook(thread_id)

    async def create_run(self, thread_id, agent_id, extra_instructions=None):
        active = self.active_runs(thread_id)
        if active:
            return RunBusy(run_id=active[0], message="already has an active run")
        self.run_instructions.append(extra_instructions)
        script = self.scripts.popleft() if self.scripts else RunScript()
        run_id = self.start_run(thread_id, script)
        return RunStarted(run=self._copy(self.runs[run_id].run))

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        self.get_run_calls += 1
        entry = self.runs[run_id]
        at_action = entry.run.status == RunStatus.REQUIRES_ACTION
        if not at_action and entry.index < len(entry.script.steps) - 1:
            entry.index += 1
            self._apply(entry)
        return self._copy(entry.run)

    async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: List[ToolOutput]) -> Run:
        entry = self.runs[run_id]
        if entry.run.status != RunStatus.REQUIRES_ACTION:
            raise AgentServiceError(f"Run {run_id} is not waiting for tool outputs")
        self.submitted.append((run_id, list(outputs)))
        entry.run.status = RunStatus.QUEUED
        entry.run.tool_calls = []
        return self._copy(entry.run)

    async def list_messages(self, thread_id: str, limit: int = 20) -> List[AgentMessage]:
        return list(reversed(self.messages.get(thread_id, [])))[:limit]


class RecordingSleep:
    """Replaces asyncio.sleep; records delays and yields to other tasks."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@dataclass
class Stack:
    agent: FakeAgentService
    sleep: RecordingSleep
    task_store: MemoryTaskStore
    tasks: TaskService
    tracker: PatternTracker
    memory: MemoryContextService
    dispatcher: ActionDispatcher
    approvals: PendingApprovalService
    registry: ThreadRegistry
    coordinator: RunCoordinator


def build_stack(config: Optional[CoordinatorConfig] = None, policy: Optional[ToolPolicy] = None) -> Stack:
    agent = FakeAgentService()
    sleep = RecordingSleep()
    task_store = MemoryTaskStore()
    tracker = PatternTracker(MemoryPatternStore())
    tasks = TaskService(task_store, patterns=tracker)
    memory = MemoryContextService(InMemoryUserMemoryStore(), task_store, patterns=tracker)
    dispatcher = ActionDispatcher(tasks, tracker, memory)
    approvals = PendingApprovalService(MemoryApprovalStore(), dispatcher)
    registry = ThreadRegistry(MemoryThreadStore(), agent)
    coordinator = RunCoordinator(
        agent=agent,
        agent_id="asst_test",
        policy=policy or ToolPolicy(),
        approvals=approvals,
        dispatcher=dispatcher,
        memory=memory,
        config=config,
        sleep=sleep,
    )
    return Stack(
        agent=agent,
        sleep=sleep,
        task_store=task_store,
        tasks=tasks,
        tracker=tracker,
        memory=memory,
        dispatcher=dispatcher,
        approvals=approvals,
        registry=registry,
        coordinator=coordinator,
    )


@pytest.fixture
def fake_agent():
    return FakeAgentService()


@pytest.fixture
def stack():
    return build_stack()
