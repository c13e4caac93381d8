"""
Pending approvals - agent-proposed actions awaiting the user's consent

- ApprovalStatus: pending -> approved | rejected; approved -> executed
- ApprovalStore: abstract storage with an atomic compare-and-set transition
- MemoryApprovalStore / PendingApprovalRepository: backends
- PendingApprovalService: ownership-checked operations and the single
  execution entry point

Every read and transition is scoped by ``user_id``; a call owned by
someone else is indistinguishable from a missing one (NotFoundError).
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from ..db.repository import Repository
from ..errors import NotFoundError, PreconditionFailedError
from ..tasks.models import utcnow
from .audit_logger import AuditLogger
from .tool_policy import parse_action

logger = logging.getLogger(__name__)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"

    @classmethod
    def terminal_states(cls) -> FrozenSet["ApprovalStatus"]:
        return frozenset({cls.REJECTED, cls.EXECUTED})

    @classmethod
    def decisions(cls) -> FrozenSet["ApprovalStatus"]:
        """Statuses a user decision may set."""
        return frozenset({cls.APPROVED, cls.REJECTED})


@dataclass
class PendingApproval:
    """A deferred tool call."""
    id: str
    user_id: str
    thread_id: str
    run_id: str
    tool_call_id: str
    function_name: str
    function_args: str = "{}"
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def arguments(self) -> Dict[str, Any]:
        try:
            parsed = json.loads(self.function_args or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "run_id": self.run_id,
            "tool_call_id": self.tool_call_id,
            "function_name": self.function_name,
            "arguments": self.arguments,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PendingApproval":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            run_id=row["run_id"],
            tool_call_id=row["tool_call_id"],
            function_name=row["function_name"],
            function_args=row.get("function_args") or "{}",
            status=ApprovalStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
        )


# ──────────────────────────────────────────────────────────────
# Storage
# ──────────────────────────────────────────────────────────────

class ApprovalStore(ABC):

    @abstractmethod
    async def insert(
        self,
        user_id: str,
        thread_id: str,
        run_id: str,
        tool_call_id: str,
        function_name: str,
        function_args: str,
    ) -> PendingApproval:
        pass

    @abstractmethod
    async def get(self, call_id: str, user_id: str) -> Optional[PendingApproval]:
        pass

    @abstractmethod
    async def find_by_tool_call(
        self, user_id: str, run_id: str, tool_call_id: str
    ) -> Optional[PendingApproval]:
        """The record already made for this tool call of this run, if any."""
        pass

    @abstractmethod
    async def list_by_status(self, user_id: str, status: ApprovalStatus) -> List[PendingApproval]:
        """Newest first."""
        pass

    @abstractmethod
    async def count_by_status(self, user_id: str, status: ApprovalStatus) -> int:
        pass

    @abstractmethod
    async def transition(
        self,
        call_id: str,
        user_id: str,
        from_statuses: FrozenSet[ApprovalStatus],
        to_status: ApprovalStatus,
    ) -> Optional[PendingApproval]:
        """Set ``to_status`` only if the current status is in ``from_statuses``.

        Returns the updated record, or None if nothing matched.
        """
        pass


class MemoryApprovalStore(ApprovalStore):
    """In-memory approval store for development/testing"""

    def __init__(self):
        self._calls: Dict[str, PendingApproval] = {}

    async def insert(self, user_id, thread_id, run_id, tool_call_id, function_name, function_args):
        call = PendingApproval(
            id=str(uuid.uuid4()),
            user_id=user_id,
            thread_id=thread_id,
            run_id=run_id,
            tool_call_id=tool_call_id,
            function_name=function_name,
            function_args=function_args,
        )
        self._calls[call.id] = call
        return call

    async def get(self, call_id: str, user_id: str) -> Optional[PendingApproval]:
        call = self._calls.get(call_id)
        if call is None or call.user_id != user_id:
            return None
        return call

    async def find_by_tool_call(self, user_id, run_id, tool_call_id):
        for call in self._calls.values():
            if (call.user_id, call.run_id, call.tool_call_id) == (user_id, run_id, tool_call_id):
                return call
        return None

    async def list_by_status(self, user_id: str, status: ApprovalStatus) -> List[PendingApproval]:
        calls = [c for c in self._calls.values() if c.user_id == user_id and c.status == status]
        calls.sort(key=lambda c: c.created_at, reverse=True)
        return calls

    async def count_by_status(self, user_id: str, status: ApprovalStatus) -> int:
        return len(await self.list_by_status(user_id, status))

    async def transition(self, call_id, user_id, from_statuses, to_status):
        call = await self.get(call_id, user_id)
        if call is None or call.status not in from_statuses:
            return None
        call.status = to_status
        call.updated_at = utcnow()
        return call


class PendingApprovalRepository(Repository, ApprovalStore):
    """Postgres approval store over ``pending_function_calls``."""

    TABLE_NAME = "pending_function_calls"

    @staticmethod
    def _uuid(call_id: str) -> Optional[uuid.UUID]:
        try:
            return uuid.UUID(str(call_id))
        except ValueError:
            return None

    async def insert(self, user_id, thread_id, run_id, tool_call_id, function_name, function_args):
        row = await self._insert({
            "user_id": user_id,
            "thread_id": thread_id,
            "run_id": run_id,
            "tool_call_id": tool_call_id,
            "function_name": function_name,
            "function_args": function_args,
            "status": ApprovalStatus.PENDING.value,
        })
        return PendingApproval.from_row(row)

    async def get(self, call_id: str, user_id: str) -> Optional[PendingApproval]:
        uid = self._uuid(call_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(
            "SELECT * FROM pending_function_calls WHERE id = $1 AND user_id = $2",
            uid,
            user_id,
        )
        return PendingApproval.from_row(dict(row)) if row else None

    async def find_by_tool_call(self, user_id, run_id, tool_call_id):
        row = await self.db.fetchrow(
            """
            SELECT * FROM pending_function_calls
            WHERE user_id = $1 AND run_id = $2 AND tool_call_id = $3
            ORDER BY created_at LIMIT 1
            """,
            user_id,
            run_id,
            tool_call_id,
        )
        return PendingApproval.from_row(dict(row)) if row else None

    async def list_by_status(self, user_id: str, status: ApprovalStatus) -> List[PendingApproval]:
        rows = await self._fetch_many(
            where="user_id = $1 AND status = $2",
            args=(user_id, status.value),
            order_by="created_at DESC",
        )
        return [PendingApproval.from_row(r) for r in rows]

    async def count_by_status(self, user_id: str, status: ApprovalStatus) -> int:
        return await self.db.fetchval(
            "SELECT COUNT(*) FROM pending_function_calls WHERE user_id = $1 AND status = $2",
            user_id,
            status.value,
        )

    async def transition(self, call_id, user_id, from_statuses, to_status):
        uid = self._uuid(call_id)
        if uid is None:
            return None
        row = await self.db.fetchrow(
            """
            UPDATE pending_function_calls
            SET status = $3, updated_at = NOW()
            WHERE id = $1 AND user_id = $2 AND status = ANY($4::text[])
            RETURNING *
            """,
            uid,
            user_id,
            to_status.value,
            [s.value for s in from_statuses],
        )
        return PendingApproval.from_row(dict(row)) if row else None


# ──────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────

class PendingApprovalService:
    """
    Ownership-checked approval operations.

    ``execute`` is the only way a deferred call reaches the task service.
    It claims the record by moving it from ``approved`` to ``executed``
    before dispatching, so a call runs at most once even under concurrent
    approvals; if the dispatch fails the claim is released back to
    ``approved``.
    """

    def __init__(self, store: ApprovalStore, dispatcher: Any, audit: Optional[AuditLogger] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.audit = audit or AuditLogger()

    async def create(
        self,
        user_id: str,
        thread_id: str,
        run_id: str,
        tool_call_id: str,
        function_name: str,
        function_args: Union[str, Dict[str, Any]],
    ) -> PendingApproval:
        """Record a deferred call; a tool call already recorded is returned as is."""
        existing = await self.store.find_by_tool_call(user_id, run_id, tool_call_id)
        if existing is not None:
            logger.info(f"Tool call {tool_call_id} of run {run_id} already recorded as {existing.id}")
            return existing
        if not isinstance(function_args, str):
            function_args = json.dumps(function_args)
        call = await self.store.insert(
            user_id, thread_id, run_id, tool_call_id, function_name, function_args or "{}"
        )
        logger.info(f"Created pending function call {call.id} for user {user_id}")
        return call

    async def list_pending(self, user_id: str) -> List[PendingApproval]:
        return await self.store.list_by_status(user_id, ApprovalStatus.PENDING)

    async def count_pending(self, user_id: str) -> int:
        return await self.store.count_by_status(user_id, ApprovalStatus.PENDING)

    async def get_by_id(self, call_id: str, user_id: str) -> PendingApproval:
        call = await self.store.get(call_id, user_id)
        if call is None:
            raise NotFoundError("Pending call not found or does not belong to user")
        return call

    async def set_status(
        self,
        call_id: str,
        user_id: str,
        status: Union[ApprovalStatus, str],
    ) -> PendingApproval:
        """Record the user's decision on a pending call.

        Only ``approved`` or ``rejected`` may be set, and only from
        ``pending``. Repeating the current decision is a no-op.
        """
        status = ApprovalStatus(status)
        if status not in ApprovalStatus.decisions():
            raise ValueError(f"Cannot set approval status to '{status.value}'")

        call = await self.get_by_id(call_id, user_id)
        if call.status == status:
            return call

        updated = await self.store.transition(
            call_id, user_id, frozenset({ApprovalStatus.PENDING}), status
        )
        if updated is None:
            current = await self.get_by_id(call_id, user_id)
            raise PreconditionFailedError(
                f"Pending call {call_id} is {current.status.value}, cannot be {status.value}"
            )

        logger.info(f"Updated pending function call {call_id} status to {status.value}")
        self.audit.log_approval_decision(user_id, call_id, updated.function_name, status.value)
        return updated

    async def execute(self, call_id: str, user_id: str) -> Any:
        """Run an approved call through the dispatcher, exactly once."""
        call = await self.get_by_id(call_id, user_id)
        if call.status != ApprovalStatus.APPROVED:
            raise PreconditionFailedError(
                f"Pending call {call_id} is {call.status.value}, must be approved to execute"
            )

        claimed = await self.store.transition(
            call_id, user_id, frozenset({ApprovalStatus.APPROVED}), ApprovalStatus.EXECUTED
        )
        if claimed is None:
            raise PreconditionFailedError(f"Pending call {call_id} is no longer approved")

        action = parse_action(claimed.function_name, claimed.arguments)
        try:
            result = await self.dispatcher.execute(user_id, action)
        except Exception:
            await self.store.transition(
                call_id, user_id, frozenset({ApprovalStatus.EXECUTED}), ApprovalStatus.APPROVED
            )
            raise

        logger.info(f"Executed pending function call {call_id} ({claimed.function_name})")
        self.audit.log_approval_decision(
            user_id, call_id, claimed.function_name, ApprovalStatus.EXECUTED.value
        )
        return result
