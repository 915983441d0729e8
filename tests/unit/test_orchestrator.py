"""Tests for the orchestration loop using MockClient."""

from __future__ import annotations

import logging
from typing import Any

import anyio
import pytest

from codeh.core.cancellation import CancellationToken
from codeh.core.orchestrator import Orchestrator, tool_result_message
from codeh.core.retry import RetryExecutor
from codeh.errors import ValidationError
from codeh.tools.base import BaseTool
from codeh.types.config import OrchestratorConfig
from codeh.types.events import ProgressEventType
from codeh.types.execution import ExecutionContext, ExecutionStatus
from codeh.types.messages import Message, ToolCall
from codeh.types.providers import ApiRequest, ApiResponse
from codeh.types.tools import ToolDef, ToolExecutionResult
from codeh.types.turn import Turn
from tests.conftest import (
    HangingClient,
    MockClient,
    MockReply,
    RecordingPermissionHandler,
    no_sleep,
)


def echo_call(call_id: str, text: str) -> dict[str, Any]:
    return {"id": call_id, "name": "echo", "args": {"text": text}}


def make_orchestrator(registry, client, history, permissions=None, **config) -> Orchestrator:
    return Orchestrator(
        registry,
        permissions or RecordingPermissionHandler(),
        client,
        history,
        OrchestratorConfig(**config),
        retry_executor=RetryExecutor(sleep=no_sleep),
    )


# --- Basic loop ---


class TestLoop:
    @pytest.mark.asyncio
    async def test_no_tools(self, registry, history):
        client = MockClient([MockReply(text="Hello!")])
        orch = make_orchestrator(registry, client, history)
        result = await orch.process_input("hi")

        assert result.response.content == "Hello!"
        assert result.iterations == 0
        assert result.stop_reason == "completed"
        assert not result.failed
        assert result.execution_contexts == ()
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_single_tool_round(self, registry, history, echo_tool):
        client = MockClient([
            MockReply(text="Let me echo.", tool_calls=[echo_call("c1", "pong")]),
            MockReply(text="It said pong."),
        ])
        orch = make_orchestrator(registry, client, history)
        result = await orch.process_input("ping")

        assert result.iterations == 1
        assert result.stop_reason == "completed"
        assert result.response.content == "It said pong."
        assert len(result.execution_contexts) == 1
        assert result.execution_contexts[0].is_completed()
        assert echo_tool.calls == [{"text": "pong"}]

    @pytest.mark.asyncio
    async def test_history_order(self, registry, history):
        client = MockClient([
            MockReply(tool_calls=[echo_call("c1", "pong")]),
            MockReply(text="done"),
        ])
        await make_orchestrator(registry, client, history).process_input("ping")

        session = await history.get_current_session()
        roles = [(m.role, m.metadata.get("is_tool_result", False)) for m in session.messages]
        assert roles == [
            ("user", False),
            ("assistant", False),
            ("user", True),
            ("assistant", False),
        ]
        feedback = session.messages[2]
        assert feedback.metadata["tool_call_id"] == "c1"
        assert feedback.metadata["tool_name"] == "echo"
        assert "## Tool: echo" in feedback.content

        # The resubmission carries the whole conversation, feedback last
        second = client.requests[1]
        assert [m.id for m in second.messages] == [m.id for m in session.messages[:3]]

    @pytest.mark.asyncio
    async def test_multiple_rounds(self, registry, history):
        client = MockClient([
            MockReply(tool_calls=[echo_call("c1", "a")]),
            MockReply(tool_calls=[echo_call("c2", "b")]),
            MockReply(text="finished"),
        ])
        result = await make_orchestrator(registry, client, history).process_input("go")
        assert result.iterations == 2
        assert [c.tool_call.id for c in result.execution_contexts] == ["c1", "c2"]
        assert result.final_turn.request.metadata["tool_call_ids"] == ["c2"]

    @pytest.mark.asyncio
    async def test_max_iterations(self, registry, history, caplog):
        client = MockClient([
            MockReply(tool_calls=[echo_call(f"c{i}", str(i))]) for i in range(10)
        ])
        orch = make_orchestrator(registry, client, history, max_iterations=2)
        with caplog.at_level(logging.WARNING, logger="codeh.core.orchestrator"):
            result = await orch.process_input("loop forever")

        assert result.stop_reason == "max_iterations"
        assert result.iterations == 2
        assert client.call_count == 3
        assert result.final_turn.has_tool_calls()
        assert "Maximum iterations (2) reached" in caplog.text

    @pytest.mark.asyncio
    async def test_request_carries_tools_and_config(self, registry, history):
        client = MockClient([MockReply(text="ok")])
        orch = make_orchestrator(
            registry, client, history,
            model="big-model", system_prompt="Be brief.", max_tokens=512, temperature=0.1,
        )
        await orch.process_input("hi")
        request = client.requests[0]
        assert [t.name for t in request.tools] == ["echo"]
        assert request.model == "big-model"
        assert request.system_prompt == "Be brief."
        assert request.max_tokens == 512
        assert request.temperature == 0.1

    @pytest.mark.asyncio
    async def test_turn_metadata(self, registry, history):
        client = MockClient([MockReply(text="hi")])
        result = await make_orchestrator(registry, client, history).process_input("hello")
        meta = result.final_turn.metadata
        assert meta.model == "mock-model"
        assert meta.finish_reason == "stop"
        assert meta.token_usage.total_tokens == 150
        assert meta.duration is not None and meta.duration >= 0


# --- Feedback for rejected and failed calls ---


class TestFeedback:
    @pytest.mark.asyncio
    async def test_rejection_feedback(self, registry, history):
        permissions = RecordingPermissionHandler({"shell": False})
        client = MockClient([
            MockReply(tool_calls=[{"id": "c1", "name": "shell", "args": {"command": "ls"}}]),
            MockReply(text="Okay, I won't."),
        ])
        orch = make_orchestrator(registry, client, history, permissions)
        result = await orch.process_input("ls")

        assert result.execution_contexts[0].is_rejected()
        feedback = client.requests[1].messages[-1]
        assert feedback.content == 'Tool "shell" was rejected by user. Reason: User rejected'
        assert feedback.metadata["is_rejection"] is True
        assert result.response.content == "Okay, I won't."

    @pytest.mark.asyncio
    async def test_failure_feedback(self, registry, history):
        client = MockClient([
            MockReply(tool_calls=[{"id": "c1", "name": "missing", "args": {}}]),
            MockReply(text="That tool does not exist."),
        ])
        await make_orchestrator(registry, client, history).process_input("go")
        feedback = client.requests[1].messages[-1]
        assert feedback.content == "Tool \"missing\" failed: Tool 'missing' not found"
        assert feedback.metadata["is_error"] is True

    def test_tool_result_message_for_success(self):
        ctx = (
            ExecutionContext.create(ToolCall(id="c1", name="echo", arguments={"text": "x"}))
            .with_permission_granted()
            .with_execution_started()
            .with_result(ToolExecutionResult.ok("x"))
        )
        message = tool_result_message(ctx)
        assert message.is_user()
        assert message.content.startswith("## Tool: echo")
        assert "**Status**: Success" in message.content
        assert message.metadata == {
            "tool_call_id": "c1", "tool_name": "echo", "is_tool_result": True,
        }


# --- Errors ---


class TestErrors:
    @pytest.mark.asyncio
    async def test_backend_failure_becomes_error_message(self, registry, history):
        client = MockClient([MockReply(error=RuntimeError("503 upstream"))])
        result = await make_orchestrator(registry, client, history).process_input("hi")

        assert result.stop_reason == "error"
        assert result.failed
        assert not result.cancelled
        assert result.response.content == "Error: 503 upstream"
        assert result.response.metadata["is_error"] is True
        assert result.final_turn.metadata.finish_reason == "error"
        session = await history.get_current_session()
        assert session.messages[-1].content == "Error: 503 upstream"

    @pytest.mark.asyncio
    async def test_backend_failure_mid_loop(self, registry, history):
        client = MockClient([
            MockReply(tool_calls=[echo_call("c1", "a")]),
            MockReply(error=ConnectionError("reset")),
        ])
        events = []
        result = await make_orchestrator(registry, client, history).process_input(
            "go", on_progress=events.append,
        )
        assert result.iterations == 1
        assert result.response.is_error()
        assert result.stop_reason == "error"
        assert events[-1].type is ProgressEventType.ORCHESTRATION_COMPLETE
        assert events[-1].data == {"stop_reason": "error", "tools_executed": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n"])
    async def test_empty_input(self, registry, history, text):
        orch = make_orchestrator(registry, MockClient(), history)
        with pytest.raises(ValidationError, match="Input cannot be empty"):
            await orch.process_input(text)

    @pytest.mark.asyncio
    async def test_run_requires_response(self, registry, history):
        orch = make_orchestrator(registry, MockClient(), history)
        with pytest.raises(ValidationError):
            await orch.run(Turn.create(Message.user("hi")))

    @pytest.mark.asyncio
    async def test_run_from_existing_turn(self, registry, history):
        client = MockClient([MockReply(text="done")])
        response = Message.assistant(
            "", tool_calls=[ToolCall(id="c1", name="echo", arguments={"text": "x"})],
        )
        turn = Turn.create(Message.user("hi")).with_response(response)
        result = await make_orchestrator(registry, client, history).run(turn)
        assert result.iterations == 1
        assert result.response.content == "done"


# --- Progress and streaming ---


class TestProgress:
    @pytest.mark.asyncio
    async def test_event_sequence(self, registry, history):
        client = MockClient([
            MockReply(tool_calls=[echo_call("c1", "a"), echo_call("c2", "b")]),
            MockReply(text="done"),
        ])
        events = []
        await make_orchestrator(registry, client, history).process_input(
            "go", on_progress=events.append,
        )
        assert [e.type for e in events] == [
            ProgressEventType.ITERATION_START,
            ProgressEventType.TOOLS_DETECTED,
            ProgressEventType.TOOL_EXECUTING,
            ProgressEventType.TOOL_EXECUTING,
            ProgressEventType.TOOL_COMPLETED,
            ProgressEventType.TOOL_COMPLETED,
            ProgressEventType.ITERATION_COMPLETE,
            ProgressEventType.ORCHESTRATION_COMPLETE,
        ]
        assert events[1].tool_count == 2
        assert events[4].context.status is ExecutionStatus.COMPLETED
        assert all(e.max_iterations == 5 for e in events)
        assert events[-1].data == {"stop_reason": "completed", "tools_executed": 2}

    @pytest.mark.asyncio
    async def test_rejected_call_reports_failure(self, registry, history):
        permissions = RecordingPermissionHandler({"echo": False})
        client = MockClient([MockReply(tool_calls=[echo_call("c1", "a")]), MockReply(text="ok")])
        events = []
        await make_orchestrator(registry, client, history, permissions).process_input(
            "go", on_progress=events.append,
        )
        assert ProgressEventType.TOOL_FAILED in [e.type for e in events]

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_loop(self, registry, history):
        def broken(event):
            raise RuntimeError("ui crashed")

        client = MockClient([MockReply(tool_calls=[echo_call("c1", "a")]), MockReply(text="ok")])
        result = await make_orchestrator(registry, client, history).process_input(
            "go", on_progress=broken, on_stream_chunk=broken,
        )
        assert result.response.content == "ok"

    @pytest.mark.asyncio
    async def test_streaming_chunks(self, registry, history):
        client = MockClient([MockReply(text="hello there world")])
        chunks = []
        result = await make_orchestrator(registry, client, history).process_input(
            "hi", on_stream_chunk=chunks.append,
        )
        assert [c.content for c in chunks if not c.done] == ["hello", "there", "world"]
        assert chunks[-1].done
        assert result.response.content == "hello there world"


# --- Parallel and cancellation ---


class TestParallelAndCancellation:
    @pytest.mark.asyncio
    async def test_parallel_flag(self, registry, history, echo_tool):
        client = MockClient([
            MockReply(tool_calls=[echo_call("c1", "a"), echo_call("c2", "b")]),
            MockReply(text="done"),
        ])
        result = await make_orchestrator(registry, client, history).process_input(
            "go", parallel=True,
        )
        assert [c.tool_call.id for c in result.execution_contexts] == ["c1", "c2"]
        assert all(c.is_completed() for c in result.execution_contexts)
        assert sorted(call["text"] for call in echo_tool.calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancel_during_tool(self, registry, history):
        token = CancellationToken()

        class StopTool(BaseTool):
            @property
            def definition(self) -> ToolDef:
                return ToolDef(name="stop", description="Cancels the run.")

            async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
                token.cancel("user pressed escape")
                await anyio.sleep(5)
                return self._ok("unreachable")

        registry.register(StopTool())
        client = MockClient([
            MockReply(tool_calls=[{"id": "c1", "name": "stop", "args": {}}]),
            MockReply(text="should not be requested"),
        ])
        result = await make_orchestrator(registry, client, history).process_input(
            "go", cancel=token,
        )
        assert result.cancelled
        assert result.stop_reason == "cancelled"
        assert client.call_count == 1
        ctx = result.execution_contexts[0]
        assert ctx.is_failed()
        assert ctx.metadata["cancelled"] is True

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, registry, history):
        token = CancellationToken()
        token.cancel()
        client = MockClient([MockReply(text="never")])
        result = await make_orchestrator(registry, client, history).process_input(
            "hi", cancel=token,
        )
        assert result.stop_reason == "cancelled"
        assert result.iterations == 0
        assert client.call_count == 0


# --- Cancellation during compression ---


class AnswerThenHang(HangingClient):
    """Returns *reply* for the first request and never answers after that."""

    def __init__(self, reply: ApiResponse) -> None:
        super().__init__()
        self._reply = reply

    async def chat(self, request: ApiRequest) -> ApiResponse:
        if not self.requests:
            self.requests.append(request)
            return self._reply
        return await super().chat(request)


async def cancel_when_started(client: HangingClient, token: CancellationToken) -> None:
    await client.started.wait()
    token.cancel("user pressed escape")


class TestCompressionCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_compressing_first_context(self, registry, history):
        for index in range(6):
            await history.add_message(Message.user(f"{index}" * 1000))
        client = HangingClient()
        orch = make_orchestrator(registry, client, history, context_window_tokens=1000)
        token = CancellationToken()

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(cancel_when_started, client, token)
                result = await orch.process_input("go", cancel=token)

        assert result.stop_reason == "cancelled"
        assert result.iterations == 0
        assert len(client.requests) == 1
        assert client.requests[0].max_tokens == 300
        session = await history.get_current_session()
        assert not session.has_compression()

    @pytest.mark.asyncio
    async def test_cancel_while_compressing_before_resubmission(self, registry, history):
        for index in range(4):
            await history.add_message(Message.user(f"m{index}"))
        reply = ApiResponse(
            content="x" * 4000,
            model="mock-model",
            finish_reason="tool_calls",
            tool_calls=(ToolCall(id="c1", name="echo", arguments={"text": "a"}),),
        )
        client = AnswerThenHang(reply)
        orch = make_orchestrator(registry, client, history, context_window_tokens=1000)
        token = CancellationToken()

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(cancel_when_started, client, token)
                result = await orch.process_input("go", cancel=token)

        assert result.stop_reason == "cancelled"
        assert result.iterations == 1
        assert result.execution_contexts[0].is_completed()
        assert len(client.requests) == 2
        assert client.requests[1].max_tokens == 300
