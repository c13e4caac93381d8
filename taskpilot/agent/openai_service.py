"""
TaskPilot OpenAI Agent Service - Assistants API (threads and runs) client

Implements AgentServiceProtocol on top of ``openai.AsyncOpenAI().beta``:
- threads, messages and runs map one-to-one onto the protocol operations
- the "thread already has an active run" rejection becomes ``RunBusy``
  (from ``create_run``) or ``ActiveRunError`` (from ``append_message``)
- every other API failure is wrapped in ``AgentServiceError``

Example:
    service = OpenAIAgentService(AgentServiceConfig(assistant_id="asst_123"))
    thread_id = await service.create_thread()
    await service.append_message(thread_id, "user", "Create a task to buy milk")
    outcome = await service.create_run(thread_id, "asst_123")
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ActiveRunError, AgentServiceError
from .models import (
    AgentMessage, AgentServiceConfig, Run, RunBusy, RunCreation,
    RunStarted, RunStatus, ToolCall, ToolOutput,
)

logger = logging.getLogger(__name__)

# "Thread thread_x already has an active run run_y."
# "Can't add messages to thread_x while a run run_y is active."
_ACTIVE_RUN_RE = re.compile(r"active run (run_\w+)|run (run_\w+) is active")


def parse_active_run_error(message: str) -> Tuple[bool, Optional[str]]:
    """Detect an active-run rejection.

    Returns:
        ``(is_active_run_error, run_id)``; ``run_id`` is None when the
        message does not name the run.
    """
    match = _ACTIVE_RUN_RE.search(message or "")
    if match:
        return True, match.group(1) or match.group(2)
    if message and "active run" in message.lower():
        return True, None
    return False, None


class OpenAIAgentService:
    """
    Remote agent backed by the OpenAI Assistants API.

    The client is created lazily so importing TaskPilot does not require
    the ``openai`` package until the service is used.
    """

    provider = "openai"

    def __init__(self, config: Optional[AgentServiceConfig] = None, **kwargs):
        if config is None:
            config = AgentServiceConfig(**kwargs)
        if not config.api_key:
            config.api_key = os.environ.get("OPENAI_API_KEY")
        self.config = config
        self._client = None
        self._openai = None

    def _get_client(self):
        """Get or create the AsyncOpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )
            self._openai = openai
            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
                default_headers=self.config.default_headers or None,
            )
        return self._client

    def _wrap(self, exc: Exception, operation: str) -> AgentServiceError:
        """Convert a client exception into the TaskPilot taxonomy."""
        message = str(getattr(exc, "message", None) or exc)
        is_active, run_id = parse_active_run_error(message)
        if is_active:
            return ActiveRunError(run_id, message)
        logger.error(f"Agent service {operation} failed: {message}")
        return AgentServiceError(f"Agent service {operation} failed: {message}")

    # ── Conversions ──

    @staticmethod
    def _to_run(raw: Any) -> Run:
        tool_calls: List[ToolCall] = []
        required = getattr(raw, "required_action", None)
        submit = getattr(required, "submit_tool_outputs", None) if required else None
        if submit is not None:
            for tc in submit.tool_calls:
                tool_calls.append(
                    ToolCall.from_raw(tc.id, tc.function.name, tc.function.arguments)
                )
        last_error = getattr(raw, "last_error", None)
        return Run(
            id=raw.id,
            thread_id=raw.thread_id,
            status=RunStatus.parse(raw.status),
            tool_calls=tool_calls,
            last_error=getattr(last_error, "message", None) if last_error else None,
        )

    @staticmethod
    def _to_message(raw: Any) -> AgentMessage:
        parts = []
        for part in raw.content or []:
            if getattr(part, "type", None) == "text" and getattr(part, "text", None):
                parts.append(part.text.value or "")
        created = getattr(raw, "created_at", None)
        return AgentMessage(
            id=raw.id,
            role=raw.role,
            text="\n".join(parts),
            created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        )

    # ── AgentServiceProtocol ──

    async def create_thread(self) -> str:
        client = self._get_client()
        try:
            thread = await client.beta.threads.create()
        except self._openai.APIError as e:
            raise self._wrap(e, "create_thread") from e
        logger.info(f"Thread created with ID: {thread.id}")
        return thread.id

    async def list_recent_runs(self, thread_id: str, limit: int = 1) -> List[Run]:
        client = self._get_client()
        try:
            page = await client.beta.threads.runs.list(thread_id, limit=limit, order="desc")
        except self._openai.APIError as e:
            raise self._wrap(e, "list_runs") from e
        return [self._to_run(r) for r in page.data]

    async def append_message(self, thread_id: str, role: str, content: str) -> None:
        client = self._get_client()
        try:
            await client.beta.threads.messages.create(thread_id, role=role, content=content)
        except self._openai.APIError as e:
            raise self._wrap(e, "append_message") from e

    async def create_run(
        self,
        thread_id: str,
        agent_id: str,
        extra_instructions: Optional[str] = None,
    ) -> RunCreation:
        client = self._get_client()
        params: Dict[str, Any] = {"assistant_id": agent_id}
        if extra_instructions:
            params["additional_instructions"] = extra_instructions
        try:
            raw = await client.beta.threads.runs.create(thread_id, **params)
        except self._openai.APIError as e:
            error = self._wrap(e, "create_run")
            if isinstance(error, ActiveRunError):
                logger.info(f"Thread {thread_id} busy with run {error.run_id}")
                return RunBusy(run_id=error.run_id, message=str(error))
            raise error from e
        return RunStarted(run=self._to_run(raw))

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        client = self._get_client()
        try:
            raw = await client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)
        except self._openai.APIError as e:
            raise self._wrap(e, "get_run") from e
        return self._to_run(raw)

    async def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: List[ToolOutput],
    ) -> Run:
        client = self._get_client()
        try:
            raw = await client.beta.threads.runs.submit_tool_outputs(
                run_id,
                thread_id=thread_id,
                tool_outputs=[o.to_dict() for o in outputs],
            )
        except self._openai.APIError as e:
            raise self._wrap(e, "submit_tool_outputs") from e
        return self._to_run(raw)

    async def list_messages(self, thread_id: str, limit: int = 20) -> List[AgentMessage]:
        client = self._get_client()
        try:
            page = await client.beta.threads.messages.list(thread_id, limit=limit, order="desc")
        except self._openai.APIError as e:
            raise self._wrap(e, "list_messages") from e
        return [self._to_message(m) for m in page.data]

    # ── Setup ──

    async def configure_assistant(
        self,
        tools: List[Dict[str, Any]],
        instructions: str,
    ) -> None:
        """Push the tool vocabulary and instructions to the remote assistant."""
        client = self._get_client()
        try:
            assistant = await client.beta.assistants.update(
                self.config.assistant_id,
                tools=tools,
                instructions=instructions,
            )
        except self._openai.APIError as e:
            raise self._wrap(e, "configure_assistant") from e
        logger.info(
            f"Assistant {assistant.id} configured with {len(assistant.tools)} tools"
        )
