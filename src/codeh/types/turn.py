"""Turn: one request/response round trip surfaced to the orchestrator's caller."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from codeh.types.messages import Message, ToolCall, new_id
from codeh.types.providers import TokenUsage


@dataclass(frozen=True, slots=True)
class TurnMetadata:
    duration: float | None = None  # seconds
    token_usage: TokenUsage | None = None
    model: str | None = None
    finish_reason: str | None = None


@dataclass(frozen=True, slots=True)
class Turn:
    """A request message, the model's response and the tool calls it asked for."""

    id: str
    request: Message
    response: Message | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    metadata: TurnMetadata = field(default_factory=TurnMetadata)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(cls, request: Message) -> Turn:
        return cls(id=new_id("turn"), request=request)

    def with_response(self, response: Message) -> Turn:
        return replace(self, response=response)

    def with_tool_calls(self, tool_calls: list[ToolCall] | tuple[ToolCall, ...]) -> Turn:
        return replace(self, tool_calls=tuple(tool_calls))

    def with_metadata(self, **changes: Any) -> Turn:
        return replace(self, metadata=replace(self.metadata, **changes))

    def is_complete(self) -> bool:
        return self.response is not None

    def has_tool_calls(self) -> bool:
        return len(self.pending_tool_calls) > 0

    @property
    def pending_tool_calls(self) -> tuple[ToolCall, ...]:
        """Tool calls the response asks for; empty until there is a response."""
        if self.response is None:
            return ()
        return self.response.tool_calls

    def to_dict(self) -> dict[str, Any]:
        usage = self.metadata.token_usage
        return {
            "id": self.id,
            "request": self.request.to_dict(),
            "response": self.response.to_dict() if self.response else None,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "metadata": {
                "duration": self.metadata.duration,
                "token_usage": usage.to_dict() if usage else None,
                "model": self.metadata.model,
                "finish_reason": self.metadata.finish_reason,
            },
            "created_at": self.created_at.isoformat(),
        }
