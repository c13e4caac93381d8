"""Tests for taskpilot.agent: run models and the Assistants API service"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from taskpilot.agent import (
    AgentServiceConfig,
    OpenAIAgentService,
    RunBusy,
    RunStarted,
    RunStatus,
    ToolCall,
    ToolOutput,
    parse_active_run_error,
)
from taskpilot.errors import ActiveRunError, AgentServiceError
from taskpilot.protocols import AgentServiceProtocol


def _api_error(message: str) -> openai.APIError:
    request = httpx.Request("POST", "https://api.openai.com/v1/threads/thread_1/runs")
    return openai.APIError(message, request, body=None)


def _raw_run(status="in_progress", tool_calls=None, last_error=None):
    required = None
    if tool_calls:
        required = SimpleNamespace(
            submit_tool_outputs=SimpleNamespace(tool_calls=[
                SimpleNamespace(
                    id=cid,
                    function=SimpleNamespace(name=name, arguments=args),
                )
                for cid, name, args in tool_calls
            ])
        )
    return SimpleNamespace(
        id="run_abc",
        thread_id="thread_1",
        status=status,
        required_action=required,
        last_error=SimpleNamespace(message=last_error) if last_error else None,
    )


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def service(client):
    svc = OpenAIAgentService(AgentServiceConfig(assistant_id="asst_1", api_key="sk-test"))
    svc._client = client
    svc._openai = openai
    return svc


class TestRunStatus:

    def test_terminal_states(self):
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.CANCELLED.is_terminal
        assert not RunStatus.REQUIRES_ACTION.is_terminal
        assert not RunStatus.QUEUED.is_terminal

    def test_parse_known(self):
        assert RunStatus.parse("requires_action") is RunStatus.REQUIRES_ACTION

    def test_parse_remote_only_states(self):
        assert RunStatus.parse("incomplete") is RunStatus.FAILED
        assert RunStatus.parse("cancelling") is RunStatus.IN_PROGRESS
        assert RunStatus.parse("something_new") is RunStatus.IN_PROGRESS


class TestToolCall:

    def test_from_raw_parses_json(self):
        call = ToolCall.from_raw("call_1", "create_task", '{"title": "Buy milk"}')
        assert call.arguments == {"title": "Buy milk"}
        assert call.raw_arguments == '{"title": "Buy milk"}'

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", "", None])
    def test_from_raw_bad_arguments_are_empty(self, raw):
        assert ToolCall.from_raw("call_1", "create_task", raw).arguments == {}

    def test_output_dict(self):
        assert ToolOutput("call_1", "{}").to_dict() == {"tool_call_id": "call_1", "output": "{}"}


class TestParseActiveRunError:

    def test_create_run_message(self):
        msg = "Thread thread_1 already has an active run run_abc123."
        assert parse_active_run_error(msg) == (True, "run_abc123")

    def test_add_message_message(self):
        msg = "Can't add messages to thread_1 while a run run_xyz is active."
        assert parse_active_run_error(msg) == (True, "run_xyz")

    def test_without_run_id(self):
        assert parse_active_run_error("There is an active run on this thread") == (True, None)

    def test_unrelated(self):
        assert parse_active_run_error("Rate limit exceeded") == (False, None)
        assert parse_active_run_error("") == (False, None)


class TestOpenAIAgentService:

    def test_satisfies_protocol(self, service):
        assert isinstance(service, AgentServiceProtocol)

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        svc = OpenAIAgentService(assistant_id="asst_1")
        assert svc.config.api_key == "sk-env"
        assert svc.config.assistant_id == "asst_1"

    async def test_create_thread(self, service, client):
        client.beta.threads.create = AsyncMock(return_value=SimpleNamespace(id="thread_9"))
        assert await service.create_thread() == "thread_9"

    async def test_create_run_passes_context(self, service, client):
        client.beta.threads.runs.create = AsyncMock(return_value=_raw_run("queued"))

        outcome = await service.create_run("thread_1", "asst_1", "## User Profile")

        assert isinstance(outcome, RunStarted)
        assert outcome.run.status is RunStatus.QUEUED
        client.beta.threads.runs.create.assert_awaited_once_with(
            "thread_1", assistant_id="asst_1", additional_instructions="## User Profile"
        )

    async def test_create_run_busy_is_a_result(self, service, client):
        client.beta.threads.runs.create = AsyncMock(
            side_effect=_api_error("Thread thread_1 already has an active run run_old.")
        )

        outcome = await service.create_run("thread_1", "asst_1")

        assert isinstance(outcome, RunBusy)
        assert outcome.run_id == "run_old"

    async def test_create_run_other_error_raises(self, service, client):
        client.beta.threads.runs.create = AsyncMock(side_effect=_api_error("Server error"))

        with pytest.raises(AgentServiceError) as exc_info:
            await service.create_run("thread_1", "asst_1")

        assert not isinstance(exc_info.value, ActiveRunError)
        assert exc_info.value.retryable is True

    async def test_append_message_busy_raises_active_run(self, service, client):
        client.beta.threads.messages.create = AsyncMock(
            side_effect=_api_error("Can't add messages to thread_1 while a run run_old is active.")
        )

        with pytest.raises(ActiveRunError) as exc_info:
            await service.append_message("thread_1", "user", "Hi")

        assert exc_info.value.run_id == "run_old"

    async def test_get_run_converts_tool_calls(self, service, client):
        client.beta.threads.runs.retrieve = AsyncMock(return_value=_raw_run(
            "requires_action",
            tool_calls=[("call_1", "delete_task", '{"taskId": "t1"}')],
        ))

        run = await service.get_run("thread_1", "run_abc")

        assert run.requires_action
        assert run.tool_calls[0].id == "call_1"
        assert run.tool_calls[0].arguments == {"taskId": "t1"}
        client.beta.threads.runs.retrieve.assert_awaited_once_with("run_abc", thread_id="thread_1")

    async def test_get_run_last_error(self, service, client):
        client.beta.threads.runs.retrieve = AsyncMock(
            return_value=_raw_run("failed", last_error="rate_limit_exceeded")
        )
        run = await service.get_run("thread_1", "run_abc")
        assert run.status is RunStatus.FAILED
        assert run.last_error == "rate_limit_exceeded"

    async def test_submit_tool_outputs(self, service, client):
        client.beta.threads.runs.submit_tool_outputs = AsyncMock(return_value=_raw_run("queued"))

        await service.submit_tool_outputs("thread_1", "run_abc", [ToolOutput("call_1", '{"ok": 1}')])

        client.beta.threads.runs.submit_tool_outputs.assert_awaited_once_with(
            "run_abc",
            thread_id="thread_1",
            tool_outputs=[{"tool_call_id": "call_1", "output": '{"ok": 1}'}],
        )

    async def test_list_recent_runs_newest_first(self, service, client):
        client.beta.threads.runs.list = AsyncMock(
            return_value=SimpleNamespace(data=[_raw_run("completed")])
        )

        runs = await service.list_recent_runs("thread_1")

        assert runs[0].status is RunStatus.COMPLETED
        client.beta.threads.runs.list.assert_awaited_once_with("thread_1", limit=1, order="desc")

    async def test_list_messages_joins_text_parts(self, service, client):
        message = SimpleNamespace(
            id="msg_1",
            role="assistant",
            created_at=1736935200,
            content=[
                SimpleNamespace(type="text", text=SimpleNamespace(value="Done.")),
                SimpleNamespace(type="image_file", text=None),
                SimpleNamespace(type="text", text=SimpleNamespace(value="Anything else?")),
            ],
        )
        client.beta.threads.messages.list = AsyncMock(return_value=SimpleNamespace(data=[message]))

        messages = await service.list_messages("thread_1")

        assert messages[0].text == "Done.\nAnything else?"
        assert messages[0].created_at.year == 2025

    async def test_configure_assistant(self, service, client):
        client.beta.assistants.update = AsyncMock(
            return_value=SimpleNamespace(id="asst_1", tools=[1, 2])
        )

        await service.configure_assistant([{"type": "function"}], "Be helpful")

        client.beta.assistants.update.assert_awaited_once_with(
            "asst_1", tools=[{"type": "function"}], instructions="Be helpful"
        )
