"""
Structured audit logging for coordinator decisions.

Produces JSON log entries via Python's standard logging module under
the ``taskpilot.audit`` logger name.  Each entry includes a timestamp,
event_type, the user_id, and event-specific fields.

Usage::

    audit = AuditLogger()
    audit.log_tool_decision(
        user_id="user_1",
        tool_name="delete_task",
        decision="defer",
        reason="delete_task always requires confirmation",
    )
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_audit_logger = logging.getLogger("taskpilot.audit")

# Argument values longer than this are cut in summaries
_MAX_ARG_CHARS = 80


def summarize_args(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Shorten long string values so audit lines stay small."""
    summary: Dict[str, Any] = {}
    for key, value in (arguments or {}).items():
        if isinstance(value, str) and len(value) > _MAX_ARG_CHARS:
            value = value[:_MAX_ARG_CHARS] + "..."
        summary[key] = value
    return summary


class AuditLogger:
    """Structured audit logger for routing, execution and approval decisions."""

    def _emit(self, event_type: str, fields: Dict[str, Any]) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        entry.update(fields)
        _audit_logger.info(json.dumps(entry, default=str))

    def log_tool_decision(
        self,
        user_id: str,
        tool_name: str,
        decision: str,
        reason: str,
        call_id: Optional[str] = None,
    ) -> None:
        """Log a router verdict (execute / defer)."""
        self._emit("tool_decision", {
            "user_id": user_id,
            "tool_name": tool_name,
            "call_id": call_id,
            "decision": decision,
            "reason": reason,
        })

    def log_tool_execution(
        self,
        user_id: str,
        tool_name: str,
        args_summary: Dict[str, Any],
        success: bool,
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        """Log a tool execution result."""
        fields: Dict[str, Any] = {
            "user_id": user_id,
            "tool_name": tool_name,
            "args_summary": args_summary,
            "success": success,
            "duration_ms": duration_ms,
        }
        if error is not None:
            fields["error"] = error
        self._emit("tool_execution", fields)

    def log_approval_decision(
        self,
        user_id: str,
        call_id: str,
        tool_name: str,
        decision: str,
    ) -> None:
        """Log an approval transition (approved / rejected / executed)."""
        self._emit("approval_decision", {
            "user_id": user_id,
            "call_id": call_id,
            "tool_name": tool_name,
            "decision": decision,
        })

    def log_run_recovery(
        self,
        user_id: str,
        thread_id: str,
        run_id: Optional[str],
        outcome: str,
        attempt: int = 0,
    ) -> None:
        """Log how a busy-thread rejection was resolved."""
        self._emit("run_recovery", {
            "user_id": user_id,
            "thread_id": thread_id,
            "run_id": run_id,
            "outcome": outcome,
            "attempt": attempt,
        })
