"""Coordinator configuration and reply types."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..agent.models import RunStatus, ToolCall


@dataclass
class CoordinatorConfig:
    """All run-coordination tunables in one place."""

    max_poll_attempts: int = 10
    """Status fetches per wait before RunTimeoutError."""
    base_delay_seconds: float = 1.0
    """Backoff unit: attempt ``n`` sleeps ``2**n * base_delay_seconds``."""
    max_action_rounds: int = 5
    """requires_action -> submit cycles allowed within one delivery."""
    busy_retry_limit: int = 1
    """append+create retries after recovering from a busy thread."""
    history_limit: int = 20
    """Messages fetched when reading the agent's reply."""

    def backoff(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay_seconds


@dataclass
class AgentReply:
    """What a delivery (or resumption) produced.

    ``awaiting_action`` is set when the run stopped in ``requires_action``
    outside this delivery's control (a run left over from an earlier
    request); the caller should resume it rather than re-deliver.
    """
    thread_id: str
    run_id: Optional[str]
    message: str
    status: RunStatus
    executed_functions: List[str] = field(default_factory=list)
    deferred_functions: List[str] = field(default_factory=list)
    pending_approvals: int = 0
    awaiting_action: bool = False
    tool_calls: List[ToolCall] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "runId": self.run_id,
            "message": self.message,
            "status": self.status.value,
            "executedFunctions": list(self.executed_functions),
            "deferredFunctions": list(self.deferred_functions),
            "pendingApprovals": self.pending_approvals,
            "awaitingAction": self.awaiting_action,
            "toolCalls": [c.to_dict() for c in self.tool_calls],
        }
