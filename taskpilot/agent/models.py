"""
Agent-side data types.

Runs are never persisted locally; these types only describe what the remote
agent reported on the last fetch.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Lifecycle states of a remote run."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @classmethod
    def terminal_states(cls) -> frozenset:
        """States after which the run never changes again."""
        return frozenset({cls.COMPLETED, cls.FAILED, cls.EXPIRED, cls.CANCELLED})

    @classmethod
    def stop_states(cls) -> frozenset:
        """States at which polling stops and returns the run."""
        return frozenset({cls.COMPLETED, cls.FAILED, cls.REQUIRES_ACTION})

    @classmethod
    def abort_states(cls) -> frozenset:
        """States at which polling fails immediately."""
        return frozenset({cls.EXPIRED, cls.CANCELLED})

    @property
    def is_terminal(self) -> bool:
        return self in self.terminal_states()

    @classmethod
    def parse(cls, value: str) -> "RunStatus":
        """Map a remote status string onto the seven tracked states.

        ``incomplete`` is terminal on the remote side and maps to FAILED;
        ``cancelling`` and anything unknown keep polling as IN_PROGRESS.
        """
        try:
            return cls(value)
        except ValueError:
            if value == "incomplete":
                return cls.FAILED
            if value != "cancelling":
                logger.warning(f"Unrecognized run status '{value}', treating as in_progress")
            return cls.IN_PROGRESS


@dataclass
class ToolCall:
    """A tool invocation proposed by the agent."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""

    @classmethod
    def from_raw(cls, call_id: str, name: str, raw_arguments: Optional[str]) -> "ToolCall":
        """Build from a JSON argument string; malformed JSON yields empty arguments."""
        raw = raw_arguments or ""
        arguments: Dict[str, Any] = {}
        if raw:
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, dict):
                    arguments = parsed
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Tool call {call_id} ({name}) has malformed arguments")
        return cls(id=call_id, name=name, arguments=arguments, raw_arguments=raw)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Run:
    """Snapshot of a remote run as last observed."""
    id: str
    thread_id: str
    status: RunStatus
    tool_calls: List[ToolCall] = field(default_factory=list)
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def requires_action(self) -> bool:
        return self.status == RunStatus.REQUIRES_ACTION


@dataclass
class AgentMessage:
    """A message from the thread history."""
    id: str
    role: str
    text: str
    created_at: Optional[datetime] = None


@dataclass
class ToolOutput:
    """Output for one tool call, echoed back with its correlation id."""
    call_id: str
    output: str

    def to_dict(self) -> Dict[str, str]:
        return {"tool_call_id": self.call_id, "output": self.output}


# ── Run creation outcome ──


@dataclass
class RunStarted:
    """The agent accepted the run."""
    run: Run


@dataclass
class RunBusy:
    """The agent refused because another run is active on the thread."""
    run_id: Optional[str]
    message: str = ""


RunCreation = Union[RunStarted, RunBusy]


@dataclass
class AgentServiceConfig:
    """
    Configuration for the remote agent client.

    Attributes:
        assistant_id: Remote assistant that runs are created against
        api_key: API key (falls back to OPENAI_API_KEY)
        base_url: Optional base URL override
        timeout: Request timeout in seconds
        max_retries: Transport-level retries inside the client library
        default_headers: Additional headers to send with requests
    """
    assistant_id: str = ""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: int = 60
    max_retries: int = 2
    default_headers: Dict[str, str] = field(default_factory=dict)
