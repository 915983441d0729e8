"""Model backend protocol and request/response types."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from codeh.types.messages import Message, ToolCall
from codeh.types.tools import ToolDef

FinishReason = Literal["stop", "length", "tool_calls", "error"]


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token usage reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True, slots=True)
class ApiRequest:
    """A single call to the model backend."""

    messages: tuple[Message, ...]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    tools: tuple[ToolDef, ...] = ()
    system_prompt: str | None = None


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """The backend's reply to an :class:`ApiRequest`."""

    content: str
    model: str
    usage: TokenUsage | None = None
    finish_reason: FinishReason = "stop"
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """Incremental output from :meth:`ModelClient.stream_chat`."""

    content: str | None = None
    done: bool = False
    usage: TokenUsage | None = None
    extra: dict[str, Any] = field(default_factory=dict)


ChunkCallback = Callable[[StreamChunk], Any]


@runtime_checkable
class ModelClient(Protocol):
    """Protocol that all model backend adapters must implement."""

    async def chat(self, request: ApiRequest) -> ApiResponse:
        """Send a request and wait for the complete response."""
        ...

    async def stream_chat(self, request: ApiRequest, on_chunk: ChunkCallback) -> ApiResponse:
        """Send a request, reporting chunks as they arrive, and return the full response."""
        ...
