"""Capability definition types and protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

ErrorType = Literal["not_found", "invalid_parameters", "execution_error"]


@dataclass(frozen=True, slots=True)
class ToolParam:
    """A parameter for a tool."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None
    default: Any = None
    items: dict[str, Any] | None = None  # For array types: JSON Schema for items


@dataclass(frozen=True, slots=True)
class ToolDef:
    """Definition of a tool exposed to the model.

    ``concurrency_safe`` declares that the tool touches no shared external
    state, which makes it eligible for parallel execution.
    """

    name: str
    description: str
    parameters: tuple[ToolParam, ...] = ()
    concurrency_safe: bool = False

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.parameters if p.required)


@dataclass(slots=True)
class ToolExecutionResult:
    """Data returned from tool execution."""

    success: bool
    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] | None = None
    error_type: ErrorType | None = None

    @classmethod
    def ok(cls, output: str, metadata: dict[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, output=output, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        output: str = "",
        metadata: dict[str, Any] | None = None,
        error_type: ErrorType | None = None,
    ) -> ToolExecutionResult:
        return cls(
            success=False, output=output, error=error,
            metadata=metadata, error_type=error_type,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "output": self.output}
        if self.error is not None:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        if self.error_type is not None:
            data["error_type"] = self.error_type
        return data


@runtime_checkable
class Tool(Protocol):
    """Protocol that all tools must implement."""

    @property
    def definition(self) -> ToolDef:
        """Return the tool definition for the model."""
        ...

    def validate_parameters(self, args: dict[str, Any]) -> bool:
        """Return True when *args* are acceptable for :meth:`execute`."""
        ...

    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        """Execute the tool with the given arguments."""
        ...
