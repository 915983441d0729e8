"""Render finished execution contexts as text the model can read."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from codeh.types.execution import ExecutionContext
from codeh.types.tools import ToolExecutionResult


@dataclass(slots=True)
class StandardizedResult:
    """Uniform view of one tool call's outcome."""

    tool: str
    status: Literal["success", "error"]
    timestamp: str
    summary: str
    duration_ms: int | None = None
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tool": self.tool,
            "status": self.status,
            "timestamp": self.timestamp,
            "summary": self.summary,
        }
        if self.duration_ms is not None:
            out["duration"] = self.duration_ms
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        if self.metadata:
            out["metadata"] = self.metadata
        return out


def _parse_data(result: ToolExecutionResult) -> Any:
    if result.metadata:
        return result.metadata
    try:
        return json.loads(result.output)
    except (TypeError, ValueError):
        return {"output": result.output}


def _summary(ctx: ExecutionContext) -> str:
    name = ctx.tool_call.name
    if ctx.is_completed() and ctx.result is not None and ctx.result.success:
        count = (ctx.result.metadata or {}).get("count")
        if count is not None:
            return f"Found {count} result(s)"
        return ctx.result.output or f"{name} executed successfully"
    if ctx.is_failed():
        return f"Failed to execute {name}: {ctx.error or 'Unknown error'}"
    return f"{name} is {ctx.status.value}"


def _render_data(data: Any, markdown: bool = True) -> str:
    if isinstance(data, str):
        return f"```\n{data}\n```\n" if markdown else data
    if isinstance(data, list):
        lines = "\n".join(f"{i}. {json.dumps(item, default=str)}" for i, item in enumerate(data, 1))
        return lines + "\n" if markdown else lines
    if isinstance(data, dict):
        dumped = json.dumps(data, indent=2, default=str)
        return f"```json\n{dumped}\n```\n" if markdown else dumped
    return str(data)


def standardize(ctx: ExecutionContext) -> StandardizedResult:
    success = ctx.is_completed() and ctx.result is not None and ctx.result.success
    started = ctx.execution_started_at or datetime.now(UTC)
    out = StandardizedResult(
        tool=ctx.tool_call.name,
        status="success" if success else "error",
        timestamp=started.isoformat(),
        summary=_summary(ctx),
    )
    duration = ctx.execution_duration()
    if duration is not None:
        out.duration_ms = round(duration * 1000)
    if success and ctx.result is not None:
        out.data = _parse_data(ctx.result)
        out.metadata = dict(ctx.result.metadata or {})
    if ctx.is_failed():
        out.error = ctx.error or (ctx.result.error if ctx.result else None) or "Unknown error"
    return out


def format_as_markdown(ctx: ExecutionContext) -> str:
    std = standardize(ctx)
    parts = [f"## Tool: {std.tool}\n\n"]
    parts.append(f"**Status**: {'Success' if std.status == 'success' else 'Error'}\n")
    parts.append(f"**Time**: {std.timestamp}")
    if std.duration_ms:
        parts.append(f" ({std.duration_ms}ms)")
    parts.append("\n\n")
    parts.append(f"### Summary\n{std.summary}\n\n")
    if std.data is not None:
        parts.append("### Results\n")
        parts.append(_render_data(std.data))
        parts.append("\n")
    if std.error:
        parts.append(f"### Error\n```\n{std.error}\n```\n")
    if std.metadata:
        parts.append("### Metadata\n")
        for key, value in std.metadata.items():
            parts.append(f"- **{key}**: {json.dumps(value, default=str)}\n")
    return "".join(parts)


def format_as_json(ctx: ExecutionContext) -> str:
    return json.dumps(standardize(ctx).to_dict(), indent=2, default=str)


def format_as_text(ctx: ExecutionContext) -> str:
    """Compact plain-text rendering."""
    std = standardize(ctx)
    text = f"[{std.tool}] {'ok' if std.status == 'success' else 'error'}\n{std.summary}"
    if std.data is not None:
        text += f"\n\nResults:\n{_render_data(std.data, markdown=False)}"
    if std.error:
        text += f"\n\nError: {std.error}"
    return text
