"""
TaskPilot Application - single entry point via YAML config.

Usage:
    from taskpilot import TaskPilot

    app = TaskPilot("config.yaml")
    reply = await app.chat("user_1", "Create a task to buy milk")
    print(reply.message)

Example config.yaml:
    database: ${DATABASE_URL}
    agent:
      assistant_id: ${OPENAI_ASSISTANT_ID}
      api_key: ${OPENAI_API_KEY}
    coordinator:
      max_poll_attempts: 10
      base_delay_seconds: 1.0
    policy:
      always_confirm: [update_task]
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

from .agent.models import AgentServiceConfig
from .orchestrator.models import AgentReply, CoordinatorConfig

logger = logging.getLogger(__name__)


def _load_config(path: str) -> dict:
    """Read YAML config file with ${VAR} environment variable substitution."""
    try:
        import yaml
    except ImportError:
        raise ImportError(
            "pyyaml is required for config file loading. "
            "Install with: pip install pyyaml"
        )

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{path}')"
            )
        return value

    resolved = re.sub(r"\$\{(\w+)\}", _replace_env, raw)
    return yaml.safe_load(resolved) or {}


def _coordinator_config(cfg: Dict[str, Any]) -> CoordinatorConfig:
    section = cfg.get("coordinator") or {}
    known = CoordinatorConfig.__dataclass_fields__
    unknown = set(section) - set(known)
    if unknown:
        raise ValueError(f"Unknown coordinator config fields: {', '.join(sorted(unknown))}")
    return CoordinatorConfig(**section)


def _agent_config(cfg: Dict[str, Any]) -> AgentServiceConfig:
    section = cfg["agent"]
    return AgentServiceConfig(
        assistant_id=section["assistant_id"],
        api_key=section.get("api_key"),
        base_url=section.get("base_url"),
        timeout=section.get("timeout", 60),
        max_retries=section.get("max_retries", 2),
    )


class TaskPilot:
    """
    TaskPilot application entry point.

    Sync constructor reads and validates config; async initialization
    (database pool, schema, services) is deferred to the first call.

    Args:
        config: Path to YAML configuration file.
    """

    def __init__(self, config: str):
        self._config = _load_config(config)
        self._initialized = False

        if "database" not in self._config:
            raise ValueError("Missing required config field: 'database'")
        agent_cfg = self._config.get("agent") or {}
        if not agent_cfg.get("assistant_id"):
            raise ValueError("Missing required config field: 'agent.assistant_id'")

        self._agent_config = _agent_config(self._config)
        self._coordinator_config = _coordinator_config(self._config)
        policy_cfg = self._config.get("policy") or {}
        self._always_confirm = list(policy_cfg.get("always_confirm") or [])

        # Set during lazy initialization
        self._database = None
        self._agent = None
        self._registry = None
        self._tasks = None
        self._tracker = None
        self._memory = None
        self._approvals = None
        self._coordinator = None

    async def _ensure_initialized(self) -> None:
        """Lazy initialization; runs once on first use."""
        if self._initialized:
            return

        # 1. Database + schema
        from .db import Database, ensure_schema
        self._database = Database(dsn=self._config["database"])
        await self._database.initialize()
        await ensure_schema(self._database)

        # 2. Remote agent
        from .agent import OpenAIAgentService
        self._agent = OpenAIAgentService(self._agent_config)
        logger.info(f"Agent service: assistant={self._agent_config.assistant_id}")

        # 3. Stores and services
        from .memory import MemoryContextService, UserMemoryRepository
        from .orchestrator import (
            ActionDispatcher, AuditLogger, PendingApprovalRepository,
            PendingApprovalService, RunCoordinator, ToolPolicy,
        )
        from .patterns import PatternTracker, WorkPatternRepository
        from .tasks import TaskRepository, TaskService
        from .threads import ThreadRegistry, ThreadRepository

        task_store = TaskRepository(self._database)
        self._tracker = PatternTracker(WorkPatternRepository(self._database))
        self._tasks = TaskService(task_store, patterns=self._tracker)
        self._memory = MemoryContextService(
            UserMemoryRepository(self._database), task_store, patterns=self._tracker
        )
        self._registry = ThreadRegistry(ThreadRepository(self._database), self._agent)

        audit = AuditLogger()
        dispatcher = ActionDispatcher(self._tasks, self._tracker, self._memory, audit)
        self._approvals = PendingApprovalService(
            PendingApprovalRepository(self._database), dispatcher, audit
        )

        # 4. Coordinator
        self._coordinator = RunCoordinator(
            agent=self._agent,
            agent_id=self._agent_config.assistant_id,
            policy=ToolPolicy(always_confirm=self._always_confirm),
            approvals=self._approvals,
            dispatcher=dispatcher,
            memory=self._memory,
            config=self._coordinator_config,
            audit=audit,
        )

        self._initialized = True
        logger.info("TaskPilot initialized")

    @property
    def config(self) -> dict:
        """Return a copy of the raw configuration dict."""
        return dict(self._config)

    async def close(self) -> None:
        """Close the database pool and drop initialized services."""
        if not self._initialized:
            return
        try:
            if self._database:
                await self._database.close()
        finally:
            self._initialized = False
            self._database = None
            self._agent = None
            self._registry = None
            self._tasks = None
            self._tracker = None
            self._memory = None
            self._approvals = None
            self._coordinator = None
            logger.info("TaskPilot shut down")

    # ── Public API ──

    async def configure_agent(self) -> None:
        """Push the tool schemas and instructions to the remote assistant."""
        from .constants import ASSISTANT_INSTRUCTIONS, TOOL_SCHEMAS

        await self._ensure_initialized()
        await self._agent.configure_assistant(TOOL_SCHEMAS, ASSISTANT_INSTRUCTIONS)

    async def chat(self, user_id: str, message: str) -> AgentReply:
        """Deliver a message on the user's thread and return the agent's reply."""
        await self._ensure_initialized()
        thread_id = await self._registry.get_or_create(user_id)
        return await self._coordinator.deliver(user_id, thread_id, message)

    async def resume(self, user_id: str, run_id: str) -> AgentReply:
        """Continue a run left waiting on the user's thread."""
        from .errors import NotFoundError

        await self._ensure_initialized()
        thread_id = await self._registry.lookup(user_id)
        if thread_id is None:
            raise NotFoundError(f"No conversation thread for user {user_id}")
        return await self._coordinator.resume(user_id, thread_id, run_id)

    async def list_pending(self, user_id: str) -> List[dict]:
        await self._ensure_initialized()
        return [c.to_dict() for c in await self._approvals.list_pending(user_id)]

    async def approve(self, call_id: str, user_id: str) -> Any:
        """Approve a pending call and execute it; returns the action's result."""
        await self._ensure_initialized()
        await self._approvals.set_status(call_id, user_id, "approved")
        return await self._approvals.execute(call_id, user_id)

    async def reject(self, call_id: str, user_id: str) -> dict:
        await self._ensure_initialized()
        call = await self._approvals.set_status(call_id, user_id, "rejected")
        return call.to_dict()

    async def get_work_patterns(self, user_id: str) -> dict:
        await self._ensure_initialized()
        snapshot = await self._tracker.get_snapshot(user_id)
        return snapshot.to_dict()

    async def get_context(self, user_id: str) -> Optional[str]:
        """The memory context the agent would receive for this user."""
        await self._ensure_initialized()
        return await self._memory.generate_context(user_id)
