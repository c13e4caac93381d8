"""Tests for taskpilot.orchestrator.approval

Tests cover:
- MemoryApprovalStore ownership scoping and compare-and-set transitions
- PendingApprovalService decisions (approve / reject) and their guards
- Execution: precondition checks, exactly-once claim, release on failure
"""

from unittest.mock import AsyncMock

import pytest

from conftest import build_stack

from taskpilot.errors import NotFoundError, PreconditionFailedError
from taskpilot.orchestrator.approval import (
    ApprovalStatus,
    MemoryApprovalStore,
    PendingApprovalService,
)
from taskpilot.orchestrator.tool_policy import DeleteTask


async def _create(service, user_id="user_1", name="delete_task", args=None, tool_call_id="call_1"):
    return await service.create(
        user_id, "thread_1", "run_1", tool_call_id, name, args or {"taskId": "t1"}
    )


@pytest.fixture
def dispatcher():
    mock = AsyncMock()
    mock.execute.return_value = {"success": True}
    return mock


@pytest.fixture
def service(dispatcher):
    return PendingApprovalService(MemoryApprovalStore(), dispatcher)


class TestMemoryApprovalStore:

    async def test_get_is_scoped_by_user(self):
        store = MemoryApprovalStore()
        call = await store.insert("user_1", "th", "run", "call", "delete_task", "{}")
        assert await store.get(call.id, "user_1") is call
        assert await store.get(call.id, "user_2") is None

    async def test_transition_requires_matching_status(self):
        store = MemoryApprovalStore()
        call = await store.insert("user_1", "th", "run", "call", "delete_task", "{}")
        done = frozenset({ApprovalStatus.APPROVED})
        assert await store.transition(call.id, "user_1", done, ApprovalStatus.EXECUTED) is None

        pending = frozenset({ApprovalStatus.PENDING})
        updated = await store.transition(call.id, "user_1", pending, ApprovalStatus.APPROVED)
        assert updated.status == ApprovalStatus.APPROVED

    async def test_list_newest_first(self):
        store = MemoryApprovalStore()
        first = await store.insert("user_1", "th", "run", "c1", "delete_task", "{}")
        second = await store.insert("user_1", "th", "run", "c2", "delete_task", "{}")
        second.created_at = first.created_at.replace(year=first.created_at.year + 1)
        listed = await store.list_by_status("user_1", ApprovalStatus.PENDING)
        assert [c.id for c in listed] == [second.id, first.id]


class TestCreateAndRead:

    async def test_create_serializes_arguments(self, service):
        call = await _create(service, args={"taskId": "t1"})
        assert call.status == ApprovalStatus.PENDING
        assert call.function_args == '{"taskId": "t1"}'
        assert call.arguments == {"taskId": "t1"}
        assert call.tool_call_id == "call_1"

    async def test_create_keeps_raw_json_string(self, service):
        call = await service.create("user_1", "th", "run", "call", "delete_task", '{"taskId":"t9"}')
        assert call.arguments == {"taskId": "t9"}

    async def test_list_pending_only_own_and_pending(self, service):
        mine = await _create(service)
        await _create(service, user_id="user_2")
        rejected = await _create(service, tool_call_id="call_2")
        await service.set_status(rejected.id, "user_1", "rejected")

        pending = await service.list_pending("user_1")
        assert [c.id for c in pending] == [mine.id]
        assert await service.count_pending("user_1") == 1

    async def test_same_tool_call_recorded_once(self, service):
        first = await _create(service)
        again = await _create(service)

        assert again.id == first.id
        assert await service.count_pending("user_1") == 1

    async def test_get_by_id_other_user_not_found(self, service):
        call = await _create(service)
        with pytest.raises(NotFoundError):
            await service.get_by_id(call.id, "user_2")

    async def test_to_dict(self, service):
        data = (await _create(service)).to_dict()
        assert data["function_name"] == "delete_task"
        assert data["arguments"] == {"taskId": "t1"}
        assert data["status"] == "pending"


class TestSetStatus:

    async def test_approve(self, service):
        call = await _create(service)
        updated = await service.set_status(call.id, "user_1", "approved")
        assert updated.status == ApprovalStatus.APPROVED

    async def test_other_user_cannot_decide(self, service):
        call = await _create(service)
        with pytest.raises(NotFoundError):
            await service.set_status(call.id, "user_2", "approved")
        assert (await service.get_by_id(call.id, "user_1")).status == ApprovalStatus.PENDING

    async def test_only_decisions_allowed(self, service):
        call = await _create(service)
        with pytest.raises(ValueError):
            await service.set_status(call.id, "user_1", "executed")
        with pytest.raises(ValueError):
            await service.set_status(call.id, "user_1", "bogus")

    async def test_repeat_decision_is_noop(self, service):
        call = await _create(service)
        await service.set_status(call.id, "user_1", "rejected")
        again = await service.set_status(call.id, "user_1", ApprovalStatus.REJECTED)
        assert again.status == ApprovalStatus.REJECTED

    async def test_cannot_flip_a_decision(self, service):
        call = await _create(service)
        await service.set_status(call.id, "user_1", "rejected")
        with pytest.raises(PreconditionFailedError):
            await service.set_status(call.id, "user_1", "approved")


class TestExecute:

    @pytest.mark.parametrize("status", [None, "rejected"])
    async def test_not_approved_fails_without_side_effects(self, service, dispatcher, status):
        call = await _create(service)
        if status:
            await service.set_status(call.id, "user_1", status)

        with pytest.raises(PreconditionFailedError):
            await service.execute(call.id, "user_1")

        dispatcher.execute.assert_not_called()
        current = await service.get_by_id(call.id, "user_1")
        assert current.status == ApprovalStatus(status or "pending")

    async def test_approved_runs_stored_arguments_once(self, service, dispatcher):
        call = await _create(service, args={"taskId": "t1"})
        await service.set_status(call.id, "user_1", "approved")

        result = await service.execute(call.id, "user_1")

        assert result == {"success": True}
        dispatcher.execute.assert_awaited_once_with("user_1", DeleteTask(task_id="t1"))
        assert (await service.get_by_id(call.id, "user_1")).status == ApprovalStatus.EXECUTED

    async def test_second_execution_rejected(self, service, dispatcher):
        call = await _create(service)
        await service.set_status(call.id, "user_1", "approved")
        await service.execute(call.id, "user_1")

        with pytest.raises(PreconditionFailedError):
            await service.execute(call.id, "user_1")
        assert dispatcher.execute.await_count == 1

    async def test_other_user_cannot_execute(self, service, dispatcher):
        call = await _create(service)
        await service.set_status(call.id, "user_1", "approved")
        with pytest.raises(NotFoundError):
            await service.execute(call.id, "user_2")
        dispatcher.execute.assert_not_called()

    async def test_failed_dispatch_releases_claim(self, service, dispatcher):
        dispatcher.execute.side_effect = NotFoundError("Task t1 not found")
        call = await _create(service)
        await service.set_status(call.id, "user_1", "approved")

        with pytest.raises(NotFoundError):
            await service.execute(call.id, "user_1")

        assert (await service.get_by_id(call.id, "user_1")).status == ApprovalStatus.APPROVED


class TestApprovalScenario:

    async def test_approved_delete_removes_task_and_leaves_patterns(self):
        stack = build_stack()
        task = await stack.tasks.create_task("user_1", "Old", ai_generated=False)
        call = await stack.approvals.create(
            "user_1", "thread_1", "run_1", "call_1", "delete_task", {"taskId": task.id}
        )

        await stack.approvals.set_status(call.id, "user_1", "approved")
        result = await stack.approvals.execute(call.id, "user_1")

        assert result["success"] is True
        assert await stack.task_store.get("user_1", task.id) is None
        snapshot = await stack.tracker.get_snapshot("user_1")
        assert snapshot.total_created == 0
        assert snapshot.total_completed == 0

    async def test_tracker_failure_after_create_keeps_execution(self):
        stack = build_stack()
        stack.tracker.on_task_created = AsyncMock(side_effect=RuntimeError("patterns down"))
        call = await stack.approvals.create(
            "user_1", "thread_1", "run_1", "call_1", "create_task", {"title": "Buy milk"}
        )
        await stack.approvals.set_status(call.id, "user_1", "approved")

        result = await stack.approvals.execute(call.id, "user_1")

        assert result["title"] == "Buy milk"
        assert (await stack.approvals.get_by_id(call.id, "user_1")).status == ApprovalStatus.EXECUTED
        with pytest.raises(PreconditionFailedError):
            await stack.approvals.execute(call.id, "user_1")
        assert [t.title for t in await stack.tasks.list_tasks("user_1")] == ["Buy milk"]
