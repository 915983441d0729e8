"""Test fixtures including MockClient for deterministic orchestration tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import anyio
import pytest

from codeh.history.memory import InMemoryHistory
from codeh.tools.base import BaseTool
from codeh.tools.registry import ToolRegistry
from codeh.types.messages import ToolCall
from codeh.types.permissions import PermissionRequest, PermissionResult
from codeh.types.providers import ApiRequest, ApiResponse, ChunkCallback, StreamChunk, TokenUsage
from codeh.types.tools import ToolDef, ToolExecutionResult, ToolParam


@dataclass
class MockReply:
    """A scripted backend reply for MockClient.

    Specify text, tool_calls (or both), or an exception to raise instead.
    """

    text: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    # Each tool call: {"id": "call_1", "name": "echo", "args": {"text": "hi"}}
    error: Exception | None = None


class MockClient:
    """A deterministic model backend for testing.

    Usage:
        client = MockClient([
            MockReply(tool_calls=[{"id": "c1", "name": "echo", "args": {"text": "hi"}}]),
            MockReply(text="Done."),
        ])
    """

    def __init__(self, replies: list[MockReply] | None = None, model: str = "mock-model"):
        self._replies = list(replies or [])
        self._index = 0
        self.model = model
        self.requests: list[ApiRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def _next(self, request: ApiRequest) -> ApiResponse:
        self.requests.append(request)
        if self._index >= len(self._replies):
            return ApiResponse(content="(no more scripted replies)", model=self.model)
        reply = self._replies[self._index]
        self._index += 1
        if reply.error is not None:
            raise reply.error
        calls = tuple(
            ToolCall(id=tc["id"], name=tc["name"], arguments=tc.get("args", {}))
            for tc in reply.tool_calls
        )
        return ApiResponse(
            content=reply.text,
            model=self.model,
            usage=TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150),
            finish_reason="tool_calls" if calls else "stop",
            tool_calls=calls,
        )

    async def chat(self, request: ApiRequest) -> ApiResponse:
        return self._next(request)

    async def stream_chat(self, request: ApiRequest, on_chunk: ChunkCallback) -> ApiResponse:
        response = self._next(request)
        for word in response.content.split(" "):
            if word:
                on_chunk(StreamChunk(content=word))
        on_chunk(StreamChunk(done=True, usage=response.usage))
        return response


class HangingClient:
    """A backend that never answers; ``started`` is set once a request arrives."""

    def __init__(self) -> None:
        self.started = anyio.Event()
        self.requests: list[ApiRequest] = []

    async def chat(self, request: ApiRequest) -> ApiResponse:
        self.requests.append(request)
        self.started.set()
        await anyio.sleep_forever()
        raise AssertionError("unreachable")

    async def stream_chat(self, request: ApiRequest, on_chunk: ChunkCallback) -> ApiResponse:
        return await self.chat(request)


class EchoTool(BaseTool):
    """Returns its ``text`` argument."""

    DEFINITION = ToolDef(
        name="echo",
        description="Echo the given text back.",
        parameters=(ToolParam(name="text", type="string", description="Text to echo"),),
        concurrency_safe=True,
    )

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    @property
    def definition(self) -> ToolDef:
        return self.DEFINITION

    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        self.calls.append(args)
        return self._ok(args["text"])


class FlakyTool(BaseTool):
    """Raises on the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int, name: str = "flaky") -> None:
        self.failures = failures
        self.calls = 0
        self._def = ToolDef(name=name, description="Fails a few times before working.")

    @property
    def definition(self) -> ToolDef:
        return self._def

    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom #{self.calls}")
        return self._ok("recovered")


class RecordingPermissionHandler:
    """Permission double: answers from a name -> approved map and records requests."""

    def __init__(
        self,
        answers: dict[str, bool] | None = None,
        *,
        pre_approved: set[str] | None = None,
        default: bool = True,
        remember: bool = False,
    ) -> None:
        self.answers = dict(answers or {})
        self.pre_approved = set(pre_approved or ())
        self.default = default
        self.remember = remember
        self.requests: list[PermissionRequest] = []
        self.saved: list[tuple[str, bool]] = []

    def has_pre_approval(self, tool_name: str) -> bool:
        return tool_name in self.pre_approved

    async def request_permission(self, request: PermissionRequest) -> PermissionResult:
        self.requests.append(request)
        approved = self.answers.get(request.tool_call.name, self.default)
        return PermissionResult(
            approved=approved,
            reason=None if approved else "User rejected",
            remember_choice=self.remember and approved,
        )

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        self.saved.append((tool_name, always_allow))
        if always_allow:
            self.pre_approved.add(tool_name)

    async def clear_preferences(self) -> None:
        self.pre_approved.clear()


async def no_sleep(seconds: float) -> None:
    """Stand-in for anyio.sleep so backoff does not slow the suite down."""


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def registry(echo_tool: EchoTool) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo_tool)
    return reg


@pytest.fixture
def history() -> InMemoryHistory:
    h = InMemoryHistory(model="mock-model")
    h.start_new_session()
    return h


@pytest.fixture
def permissions() -> RecordingPermissionHandler:
    return RecordingPermissionHandler()
