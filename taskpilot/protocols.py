"""
TaskPilot Protocols - Abstract interfaces for the external collaborators

The coordinator only talks to the remote agent, the task store and the
memory service through these contracts, so tests and alternative backends
can be dropped in without touching orchestration code.
"""

from typing import Protocol, List, Dict, Any, Optional, runtime_checkable

from .agent.models import AgentMessage, Run, RunCreation, ToolOutput


@runtime_checkable
class AgentServiceProtocol(Protocol):
    """
    Abstract interface for the remote conversational agent.

    Implementations must report the seven run states of ``RunStatus`` and
    must signal a thread's "already has an active run" rejection:
    ``create_run`` returns ``RunBusy``; ``append_message`` raises
    ``ActiveRunError``.

    Example:
        class MyAgent:
            async def create_thread(self) -> str:
                return (await client.threads.create()).id
            ...
    """

    async def create_thread(self) -> str:
        """Create a remote conversation thread and return its id."""
        ...

    async def list_recent_runs(self, thread_id: str, limit: int = 1) -> List[Run]:
        """Most recent runs on the thread, newest first."""
        ...

    async def append_message(self, thread_id: str, role: str, content: str) -> None:
        """Append a message to the thread."""
        ...

    async def create_run(
        self,
        thread_id: str,
        agent_id: str,
        extra_instructions: Optional[str] = None,
    ) -> RunCreation:
        """Start a run, or report the run that is already active."""
        ...

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        """Fetch the current state of a run."""
        ...

    async def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: List[ToolOutput],
    ) -> Run:
        """Submit tool outputs for a run waiting in ``requires_action``."""
        ...

    async def list_messages(self, thread_id: str, limit: int = 20) -> List[AgentMessage]:
        """Thread messages, newest first."""
        ...


@runtime_checkable
class TaskServiceProtocol(Protocol):
    """
    Task Mutation collaborator, scoped by user id.

    ``update_task`` and ``delete_task`` raise ``NotFoundError`` when the
    task does not belong to ``user_id``.
    """

    async def create_task(self, user_id: str, title: str, **fields: Any) -> Any:
        ...

    async def update_task(self, user_id: str, task_id: str, **fields: Any) -> Any:
        ...

    async def delete_task(self, user_id: str, task_id: str) -> Dict[str, Any]:
        ...

    async def list_tasks(self, user_id: str, **filters: Any) -> List[Any]:
        ...

    async def analyze_productivity(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


@runtime_checkable
class MemoryContextProtocol(Protocol):
    """
    Produces free-text context about a user for the agent.

    Must not raise: an empty string is the degraded result.
    """

    async def generate_context(self, user_id: str) -> str:
        ...
