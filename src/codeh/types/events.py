"""Progress events emitted by the orchestration loop."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from codeh.types.execution import ExecutionContext


class ProgressEventType(Enum):
    ITERATION_START = "iteration_start"
    TOOLS_DETECTED = "tools_detected"
    TOOL_EXECUTING = "tool_executing"
    TOOL_COMPLETED = "tool_completed"
    TOOL_FAILED = "tool_failed"
    ITERATION_COMPLETE = "iteration_complete"
    ORCHESTRATION_COMPLETE = "orchestration_complete"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Structured progress notification for UI consumers."""

    type: ProgressEventType
    iteration: int
    max_iterations: int
    tool_name: str | None = None
    tool_call_id: str | None = None
    tool_count: int | None = None
    context: ExecutionContext | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


ProgressCallback = Callable[[ProgressEvent], Any]
