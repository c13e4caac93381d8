"""
TaskPilot remote agent integration.

- models: run states, tool calls, run creation outcomes, client config
- OpenAIAgentService: Assistants API implementation of AgentServiceProtocol
"""

from .models import (
    AgentMessage,
    AgentServiceConfig,
    Run,
    RunBusy,
    RunCreation,
    RunStarted,
    RunStatus,
    ToolCall,
    ToolOutput,
)
from .openai_service import OpenAIAgentService, parse_active_run_error

__all__ = [
    "AgentMessage",
    "AgentServiceConfig",
    "Run",
    "RunBusy",
    "RunCreation",
    "RunStarted",
    "RunStatus",
    "ToolCall",
    "ToolOutput",
    "OpenAIAgentService",
    "parse_active_run_error",
]
