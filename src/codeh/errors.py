"""Exception types raised by the orchestration core.

Lower layers (registry, retry executor) report failures as structured values;
these exceptions are for conditions that have to cross a layer boundary.
"""

from __future__ import annotations

from typing import Any


class CodehError(Exception):
    """Base class for all codeh errors."""

    code = "CODEH_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(CodehError):
    """Malformed input, rejected before any backend call."""

    code = "VALIDATION_ERROR"


class ConfigurationError(CodehError):
    """Invalid orchestrator configuration."""

    code = "CONFIGURATION_ERROR"


class ToolExecutionError(CodehError):
    """A capability raised while executing. Eligible for retry."""

    code = "TOOL_EXECUTION_FAILED"

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(reason, tool_name=tool_name)
        self.tool_name = tool_name


class ExecutionTimeoutError(CodehError, TimeoutError):
    """An operation exceeded its time budget. Eligible for retry."""

    code = "TIMEOUT_ERROR"

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(
            f"Operation timed out: {operation} after {timeout:g}s",
            operation=operation,
            timeout=timeout,
        )
        self.operation = operation
        self.timeout = timeout


class CompressionError(CodehError):
    """Model-assisted summarization of the conversation failed."""

    code = "COMPRESSION_ERROR"


class OperationCancelledError(CodehError):
    """The caller cancelled an in-progress orchestration."""

    code = "CANCELLED"


class InvalidTransitionError(CodehError, ValueError):
    """An execution context was moved along an edge the state machine forbids."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition execution context from {current!r} to {target!r}",
            current=current,
            target=target,
        )
