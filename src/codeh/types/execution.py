"""Per-call execution state machine.

Lifecycle::

    pending -> awaiting_permission -> approved | rejected
    pending -> approved                       (pre-approved)
    approved -> executing -> completed | failed
    approved -> failed                        (cancelled before start)

``completed``, ``failed`` and ``rejected`` are terminal. Every transition
returns a new :class:`ExecutionContext`; older references stay valid, so a
caller can keep them for progress reporting while the pipeline advances.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from codeh.errors import InvalidTransitionError
from codeh.types.messages import ToolCall, new_id
from codeh.types.tools import ToolExecutionResult


class ExecutionStatus(Enum):
    """Status of a tool invocation."""

    PENDING = "pending"
    AWAITING_PERMISSION = "awaiting_permission"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.REJECTED,
})

_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.AWAITING_PERMISSION,
        ExecutionStatus.APPROVED,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.AWAITING_PERMISSION: frozenset({
        ExecutionStatus.APPROVED,
        ExecutionStatus.REJECTED,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.APPROVED: frozenset({
        ExecutionStatus.EXECUTING,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.EXECUTING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.REJECTED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Immutable record tracking one tool call through permission and execution."""

    id: str
    tool_call: ToolCall
    status: ExecutionStatus = ExecutionStatus.PENDING
    result: ToolExecutionResult | None = None
    error: str | None = None
    permission_granted_at: datetime | None = None
    execution_started_at: datetime | None = None
    execution_completed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, tool_call: ToolCall) -> ExecutionContext:
        return cls(
            id=new_id("tool_ctx"),
            tool_call=tool_call,
            metadata={"created_at": _now().isoformat()},
        )

    # -- Transitions ------------------------------------------------------

    def _moved(self, target: ExecutionStatus, **changes: Any) -> ExecutionContext:
        if target is not self.status and target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, target.value)
        return replace(self, status=target, **changes)

    def with_status(self, status: ExecutionStatus) -> ExecutionContext:
        return self._moved(status)

    def with_permission_granted(self) -> ExecutionContext:
        return self._moved(ExecutionStatus.APPROVED, permission_granted_at=_now())

    def with_permission_rejected(self, reason: str | None = None) -> ExecutionContext:
        metadata = {**self.metadata, "rejection_reason": reason} if reason else self.metadata
        return self._moved(ExecutionStatus.REJECTED, metadata=metadata)

    def with_execution_started(self) -> ExecutionContext:
        return self._moved(ExecutionStatus.EXECUTING, execution_started_at=_now())

    def with_result(self, result: ToolExecutionResult) -> ExecutionContext:
        target = ExecutionStatus.COMPLETED if result.success else ExecutionStatus.FAILED
        return self._moved(
            target,
            result=result,
            error=result.error,
            execution_completed_at=_now(),
        )

    def with_error(self, error: str) -> ExecutionContext:
        return self._moved(ExecutionStatus.FAILED, error=error, execution_completed_at=_now())

    def with_metadata(self, **metadata: Any) -> ExecutionContext:
        return replace(self, metadata={**self.metadata, **metadata})

    # -- Classification ---------------------------------------------------

    def is_pending(self) -> bool:
        return self.status is ExecutionStatus.PENDING

    def is_awaiting_permission(self) -> bool:
        return self.status is ExecutionStatus.AWAITING_PERMISSION

    def is_approved(self) -> bool:
        return self.status is ExecutionStatus.APPROVED

    def is_executing(self) -> bool:
        return self.status is ExecutionStatus.EXECUTING

    def is_completed(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status is ExecutionStatus.FAILED

    def is_rejected(self) -> bool:
        return self.status is ExecutionStatus.REJECTED

    def is_finished(self) -> bool:
        return self.is_completed() or self.is_failed() or self.is_rejected()

    def execution_duration(self) -> float | None:
        """Seconds between execution start and completion, if both are recorded."""
        if self.execution_started_at and self.execution_completed_at:
            return (self.execution_completed_at - self.execution_started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        def iso(ts: datetime | None) -> str | None:
            return ts.isoformat() if ts else None

        return {
            "id": self.id,
            "tool_call": self.tool_call.to_dict(),
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "permission_granted_at": iso(self.permission_granted_at),
            "execution_started_at": iso(self.execution_started_at),
            "execution_completed_at": iso(self.execution_completed_at),
            "metadata": dict(self.metadata),
        }
