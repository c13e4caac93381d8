"""
TaskPilot Run Coordinator - drives one user message through the agent's run protocol

Delivery:
1. If the thread's latest run is unfinished, wait for it first
2. Append the message and start a run with the user's memory context
3. On "thread already has an active run", recover: wait for that run,
   re-check it, then retry append+create (bounded)
4. Poll with exponential backoff until completed / failed / requires_action
5. On requires_action route every tool call (execute now or defer to an
   approval), submit all outputs, and poll again
6. Read the agent's latest message and build the reply

Run state is always re-read from the agent; nothing about runs is cached.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from ..agent.models import Run, RunBusy, RunStarted, RunStatus, ToolOutput
from ..constants import CREATE_TASK, PENDING_APPROVAL_MESSAGE
from ..errors import ActiveRunError, RunFailedError, RunTimeoutError, ThreadBusyError
from ..locks import KeyedLocks
from ..protocols import AgentServiceProtocol, MemoryContextProtocol
from .approval import PendingApprovalService
from .audit_logger import AuditLogger
from .dispatcher import ActionDispatcher
from .models import AgentReply, CoordinatorConfig
from .tool_policy import Decision, ToolPolicy, parse_action

logger = logging.getLogger(__name__)

AWAITING_ACTION_MESSAGE = (
    "A previous request is waiting on pending actions and must be resumed "
    "before new messages can be processed."
)

Sleep = Callable[[float], Awaitable[Any]]


def tasks_created_note(count: int) -> str:
    noun = "task has" if count == 1 else "tasks have"
    return f"\n\n({count} {noun} been added to your task list.)"


class RunCoordinator:
    """
    Coordinates message delivery against the remote agent for many users.

    Safe to call concurrently, including for the same user: the agent's
    one-active-run rule keeps runs apart, and a busy rejection is an
    expected outcome handled by recovery. Within this process, only one
    caller at a time answers a given run's tool calls.
    """

    def __init__(
        self,
        agent: AgentServiceProtocol,
        agent_id: str,
        policy: ToolPolicy,
        approvals: PendingApprovalService,
        dispatcher: ActionDispatcher,
        memory: Optional[MemoryContextProtocol] = None,
        config: Optional[CoordinatorConfig] = None,
        audit: Optional[AuditLogger] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.agent = agent
        self.agent_id = agent_id
        self.policy = policy
        self.approvals = approvals
        self.dispatcher = dispatcher
        self.memory = memory
        self.config = config or CoordinatorConfig()
        self.audit = audit or AuditLogger()
        self._sleep = sleep
        self._run_locks = KeyedLocks()

    # ──────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────

    async def deliver(self, user_id: str, thread_id: str, message: str) -> AgentReply:
        """Deliver a user message and wait for the agent's answer.

        Raises:
            RunFailedError: the run failed, expired or was cancelled.
            RunTimeoutError: the polling budget ran out; the run may
                still finish later.
            ThreadBusyError: an earlier run is still processing.
            AgentServiceError: transient remote failure.
        """
        logger.info(f"Sending message to thread {thread_id} for user {user_id}")

        pending = await self._wait_for_unfinished(thread_id)
        if pending is not None:
            return await self._awaiting_reply(user_id, thread_id, pending)

        context = await self._context(user_id)
        run, started = await self._start_run(user_id, thread_id, message, context)
        if not started:
            return await self._awaiting_reply(user_id, thread_id, run)

        logger.info(f"Run {run.id} started on thread {thread_id}")
        run = await self._poll(thread_id, run.id)
        return await self._drive(user_id, thread_id, run)

    async def resume(self, user_id: str, thread_id: str, run_id: str) -> AgentReply:
        """Continue a run, typically one left in ``requires_action``."""
        logger.info(f"Resuming run {run_id} on thread {thread_id} for user {user_id}")
        run = await self._poll(thread_id, run_id)
        return await self._drive(user_id, thread_id, run)

    # ──────────────────────────────────────────────────────────────
    # Steps
    # ──────────────────────────────────────────────────────────────

    async def _wait_for_unfinished(self, thread_id: str) -> Optional[Run]:
        """Wait out the thread's latest run if it is still going.

        Returns that run if it stopped in ``requires_action``, else None.
        """
        runs = await self.agent.list_recent_runs(thread_id, limit=1)
        if not runs or runs[0].is_terminal:
            return None

        prior = runs[0]
        logger.info(f"Thread {thread_id} has unfinished run {prior.id} ({prior.status.value})")
        try:
            run = await self._poll(thread_id, prior.id)
        except RunFailedError as e:
            # Expired or cancelled: the thread is free again
            logger.info(f"Earlier run {prior.id} ended {e.status}")
            return None
        except RunTimeoutError as e:
            raise ThreadBusyError(thread_id, prior.id) from e
        return run if run.requires_action else None

    async def _context(self, user_id: str) -> str:
        if self.memory is None:
            return ""
        try:
            return await self.memory.generate_context(user_id) or ""
        except Exception as e:
            logger.warning(f"Memory context unavailable for {user_id}: {e}")
            return ""

    async def _start_run(
        self,
        user_id: str,
        thread_id: str,
        message: str,
        context: str,
    ) -> Tuple[Run, bool]:
        """Append the message and create a run, recovering from busy rejections.

        Returns ``(run, True)`` for a newly started run, or ``(run, False)``
        when recovery found the active run waiting in ``requires_action``.
        """
        appended = False
        limit = self.config.busy_retry_limit

        for attempt in range(limit + 1):
            busy: Optional[RunBusy] = None
            if not appended:
                try:
                    await self.agent.append_message(thread_id, "user", message)
                    appended = True
                except ActiveRunError as e:
                    busy = RunBusy(run_id=e.run_id, message=str(e))

            if busy is None:
                outcome = await self.agent.create_run(thread_id, self.agent_id, context or None)
                if isinstance(outcome, RunStarted):
                    if attempt:
                        self.audit.log_run_recovery(
                            user_id, thread_id, outcome.run.id, "retried", attempt
                        )
                    return outcome.run, True
                busy = outcome

            logger.warning(
                f"Thread {thread_id} busy with run {busy.run_id} (attempt {attempt + 1})"
            )
            if attempt >= limit:
                self.audit.log_run_recovery(user_id, thread_id, busy.run_id, "busy", attempt)
                raise ThreadBusyError(thread_id, busy.run_id)

            waiting = await self._recover(user_id, thread_id, busy, attempt)
            if waiting is not None:
                return waiting, False

        raise ThreadBusyError(thread_id)

    async def _recover(
        self,
        user_id: str,
        thread_id: str,
        busy: RunBusy,
        attempt: int,
    ) -> Optional[Run]:
        """Wait for the run that blocked us and re-check it.

        Returns the run if it is waiting in ``requires_action``; None when
        the thread is free for a retry. Raises ThreadBusyError otherwise.
        """
        run_id = busy.run_id
        if run_id is None:
            runs = await self.agent.list_recent_runs(thread_id, limit=1)
            run_id = runs[0].id if runs else None
        if run_id is None:
            self.audit.log_run_recovery(user_id, thread_id, None, "unknown_run", attempt)
            return None

        try:
            await self._poll(thread_id, run_id)
        except RunFailedError as e:
            logger.info(f"Blocking run {run_id} ended {e.status}")
        except RunTimeoutError as e:
            self.audit.log_run_recovery(user_id, thread_id, run_id, "timeout", attempt)
            raise ThreadBusyError(thread_id, run_id) from e

        run = await self.agent.get_run(thread_id, run_id)
        if run.requires_action:
            self.audit.log_run_recovery(user_id, thread_id, run_id, "requires_action", attempt)
            return run
        if not run.is_terminal:
            self.audit.log_run_recovery(user_id, thread_id, run_id, "still_running", attempt)
            raise ThreadBusyError(thread_id, run_id)

        self.audit.log_run_recovery(user_id, thread_id, run_id, "resolved", attempt)
        return None

    async def _poll(self, thread_id: str, run_id: str) -> Run:
        """Fetch the run until it stops, with exponential backoff between fetches."""
        attempts = self.config.max_poll_attempts
        for attempt in range(attempts):
            run = await self.agent.get_run(thread_id, run_id)
            if run.status in RunStatus.stop_states():
                return run
            if run.status in RunStatus.abort_states():
                raise RunFailedError(run.id, run.status.value, run.last_error)

            if attempt < attempts - 1:
                delay = self.config.backoff(attempt)
                logger.debug(f"Run {run_id} is {run.status.value}; next check in {delay}s")
                await self._sleep(delay)

        logger.error(f"Run {run_id} timed out after {attempts} polls")
        raise RunTimeoutError(run_id, attempts)

    async def _drive(self, user_id: str, thread_id: str, run: Run) -> AgentReply:
        """Handle tool-call rounds until the run completes, then build the reply."""
        executed: List[str] = []
        deferred: List[str] = []
        rounds = 0

        while run.requires_action:
            if rounds >= self.config.max_action_rounds:
                raise RunFailedError(
                    run.id,
                    run.status.value,
                    f"exceeded {self.config.max_action_rounds} tool-call rounds",
                )
            async with self._run_locks.hold(run.id):
                # Another caller may have answered this round while we waited
                run = await self.agent.get_run(thread_id, run.id)
                if run.requires_action:
                    rounds += 1
                    outputs = await self._process_required_action(
                        user_id, thread_id, run, executed, deferred
                    )
                    run = await self.agent.submit_tool_outputs(thread_id, run.id, outputs)
                else:
                    logger.info(f"Run {run.id} tool calls already answered elsewhere")
            run = await self._poll(thread_id, run.id)

        if run.status == RunStatus.FAILED:
            logger.error(f"Run {run.id} failed: {run.last_error}")
            raise RunFailedError(run.id, run.status.value, run.last_error)

        return await self._reply(user_id, thread_id, run, executed, deferred)

    async def _process_required_action(
        self,
        user_id: str,
        thread_id: str,
        run: Run,
        executed: List[str],
        deferred: List[str],
    ) -> List[ToolOutput]:
        outputs: List[ToolOutput] = []
        for call in run.tool_calls:
            action = parse_action(call.name, call.arguments)
            decision = self.policy.classify(action)
            self.audit.log_tool_decision(
                user_id, call.name, decision.value, self.policy.get_reason(action), call.id
            )

            try:
                if decision is Decision.EXECUTE:
                    result = await self.dispatcher.execute(user_id, action)
                    executed.append(call.name)
                else:
                    approval = await self.approvals.create(
                        user_id,
                        thread_id,
                        run.id,
                        call.id,
                        call.name,
                        call.raw_arguments or call.arguments,
                    )
                    deferred.append(call.name)
                    result = {
                        "status": "pending_approval",
                        "pendingCallId": approval.id,
                        "message": PENDING_APPROVAL_MESSAGE,
                    }
                output = json.dumps(result, default=str)
            except Exception as e:
                logger.warning(f"Tool call {call.id} ({call.name}) failed: {e}")
                output = json.dumps({"error": str(e)})

            outputs.append(ToolOutput(call_id=call.id, output=output))
        return outputs

    async def _reply(
        self,
        user_id: str,
        thread_id: str,
        run: Run,
        executed: List[str],
        deferred: List[str],
    ) -> AgentReply:
        messages = await self.agent.list_messages(thread_id, limit=self.config.history_limit)
        latest = next((m for m in messages if m.role == "assistant"), None)
        if latest is None:
            logger.warning(f"No assistant message on thread {thread_id} after run {run.id}")
        text = latest.text if latest else ""

        created = executed.count(CREATE_TASK)
        if created:
            text += tasks_created_note(created)

        return AgentReply(
            thread_id=thread_id,
            run_id=run.id,
            message=text,
            status=run.status,
            executed_functions=executed,
            deferred_functions=deferred,
            pending_approvals=await self.approvals.count_pending(user_id),
        )

    async def _awaiting_reply(self, user_id: str, thread_id: str, run: Run) -> AgentReply:
        logger.info(f"Run {run.id} on thread {thread_id} is awaiting action")
        return AgentReply(
            thread_id=thread_id,
            run_id=run.id,
            message=AWAITING_ACTION_MESSAGE,
            status=run.status,
            pending_approvals=await self.approvals.count_pending(user_id),
            awaiting_action=True,
            tool_calls=list(run.tool_calls),
        )
