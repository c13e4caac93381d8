"""
TaskPilot errors.

Every error raised to callers derives from TaskPilotError. ``retryable``
tells the surrounding system whether re-delivering the same request later
can succeed; ``user_message`` is the text to show the end user.
"""

from typing import Optional

RETRY_SHORTLY = "The assistant is busy right now. Please try again shortly."


class TaskPilotError(Exception):
    """Base class for TaskPilot errors."""

    retryable: bool = False

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self._user_message = user_message

    @property
    def user_message(self) -> str:
        if self._user_message:
            return self._user_message
        if self.retryable:
            return RETRY_SHORTLY
        return str(self)


class AgentServiceError(TaskPilotError):
    """Transient failure talking to the remote agent."""

    retryable = True


class ActiveRunError(AgentServiceError):
    """The remote agent refused an operation because a run is active.

    Raised by agent service implementations; the coordinator converts it to
    a ``RunBusy`` outcome and recovers.
    """

    def __init__(self, run_id: Optional[str], message: str = ""):
        super().__init__(message or f"Thread already has an active run {run_id}")
        self.run_id = run_id


class ThreadBusyError(TaskPilotError):
    """A previous run on the thread is still processing after recovery."""

    retryable = True

    def __init__(self, thread_id: str, run_id: Optional[str] = None):
        super().__init__(
            f"Thread {thread_id} is still processing run {run_id}",
            user_message="Your previous request is still processing. Please retry later.",
        )
        self.thread_id = thread_id
        self.run_id = run_id


class RunFailedError(TaskPilotError):
    """A run reached ``failed``, ``expired`` or ``cancelled``."""

    def __init__(self, run_id: str, status: str, reason: Optional[str] = None):
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Run {run_id} {status}{detail}",
            user_message="The assistant could not complete this request.",
        )
        self.run_id = run_id
        self.status = status
        self.reason = reason


class RunTimeoutError(TaskPilotError):
    """Polling budget exhausted; the run may still complete later."""

    retryable = True

    def __init__(self, run_id: str, attempts: int):
        super().__init__(f"Run {run_id} timed out after {attempts} polls")
        self.run_id = run_id
        self.attempts = attempts


class NotFoundError(TaskPilotError):
    """Resource is missing or not owned by the requesting user."""


class PreconditionFailedError(TaskPilotError):
    """Operation not allowed in the resource's current state."""


class UnknownActionError(TaskPilotError, ValueError):
    """Tool call names an action outside the supported vocabulary."""

    def __init__(self, name: str):
        super().__init__(f"Unknown function: {name}")
        self.name = name
