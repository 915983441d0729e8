"""The agentic loop: model -> tool calls -> tool results -> model -> ..."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from codeh.core.cancellation import CancellationToken
from codeh.core.context import ContextWindowManager
from codeh.core.formatter import format_as_markdown
from codeh.core.pipeline import PipelineResult, ToolCallPipeline
from codeh.core.retry import RetryExecutor
from codeh.errors import OperationCancelledError, ValidationError
from codeh.observability.metrics import record_backend_latency, record_tokens
from codeh.tools.registry import ToolRegistry
from codeh.types.config import OrchestratorConfig
from codeh.types.events import ProgressCallback, ProgressEvent, ProgressEventType
from codeh.types.execution import ExecutionContext
from codeh.types.history import HistoryRepository
from codeh.types.messages import Message, ToolCall
from codeh.types.permissions import PermissionHandler
from codeh.types.providers import ApiRequest, ChunkCallback, ModelClient, StreamChunk
from codeh.types.turn import Turn, TurnMetadata

logger = logging.getLogger(__name__)

StopReason = Literal["completed", "max_iterations", "cancelled", "error"]


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    """What :meth:`Orchestrator.run` hands back to its caller."""

    final_turn: Turn
    execution_contexts: tuple[ExecutionContext, ...]
    iterations: int
    stop_reason: StopReason

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == "cancelled"

    @property
    def failed(self) -> bool:
        return self.stop_reason == "error"

    @property
    def response(self) -> Message | None:
        return self.final_turn.response


def tool_result_message(ctx: ExecutionContext) -> Message:
    """Build the feedback message the model sees for one finished call."""
    call = ctx.tool_call
    metadata: dict[str, Any] = {
        "tool_call_id": call.id,
        "tool_name": call.name,
        "is_tool_result": True,
    }
    if ctx.is_completed() and ctx.result is not None:
        content = format_as_markdown(ctx)
    elif ctx.is_rejected():
        content = f'Tool "{call.name}" was rejected by user.'
        reason = ctx.metadata.get("rejection_reason")
        if reason:
            content += f" Reason: {reason}"
        metadata["is_rejection"] = True
    else:
        content = f'Tool "{call.name}" failed: {ctx.error}'
        metadata["is_error"] = True
    return Message.user(content, metadata=metadata)


class Orchestrator:
    """Drives a multi-round exchange with the model backend.

    Each iteration runs the tool calls the model asked for through the
    permission/retry pipeline, feeds the results back and takes the next
    response. The loop ends when a response asks for no tools, after
    ``max_iterations`` backend resubmissions, or on cancellation. A final
    response that is a backend failure ends it with ``stop_reason="error"``.

    Usage::

        orchestrator = Orchestrator(registry, permissions, client, history)
        result = await orchestrator.process_input("Rename foo to bar in utils.py")
        print(result.final_turn.response.content)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_handler: PermissionHandler,
        client: ModelClient,
        history: HistoryRepository,
        config: OrchestratorConfig | None = None,
        *,
        context_manager: ContextWindowManager | None = None,
        pipeline: ToolCallPipeline | None = None,
        retry_executor: RetryExecutor | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._registry = registry
        self._client = client
        self._history = history
        self._pipeline = pipeline or ToolCallPipeline(
            registry,
            permission_handler,
            retry_policy=self._config.retry_policy(),
            tool_timeout=self._config.tool_timeout,
            retry_executor=retry_executor,
        )
        self._context = context_manager or ContextWindowManager(
            history, client, keep_recent_count=self._config.keep_recent_count,
        )

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_input(
        self,
        text: str,
        conversation_hint: str | None = None,
        on_stream_chunk: ChunkCallback | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        parallel: bool | None = None,
        cancel: CancellationToken | None = None,
    ) -> OrchestrationResult:
        """Send raw user *text* to the model and orchestrate whatever follows."""
        if not text or not text.strip():
            raise ValidationError("Input cannot be empty")

        user_message = Message.user(text)
        await self._history.add_message(user_message)
        turn = Turn.create(user_message)
        try:
            response, metadata = await self._call_backend((), on_stream_chunk, cancel)
        except OperationCancelledError:
            logger.info("Cancelled before the first response")
            self._emit(on_progress, ProgressEventType.ORCHESTRATION_COMPLETE, 0,
                       message="cancelled", data={"stop_reason": "cancelled"})
            return OrchestrationResult(turn, (), 0, "cancelled")

        turn = (
            turn.with_response(response)
            .with_tool_calls(response.tool_calls)
            .with_metadata(**_metadata_fields(metadata))
        )
        return await self.run(
            turn,
            conversation_hint,
            on_stream_chunk,
            on_progress,
            parallel=parallel,
            cancel=cancel,
        )

    async def run(
        self,
        initial_turn: Turn,
        conversation_hint: str | None = None,
        on_stream_chunk: ChunkCallback | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        parallel: bool | None = None,
        cancel: CancellationToken | None = None,
    ) -> OrchestrationResult:
        """Run the agentic loop starting from a turn that already has a response."""
        if initial_turn.response is None:
            raise ValidationError("Initial turn has no response to orchestrate")

        max_iterations = self._config.max_iterations
        use_parallel = self._config.parallel if parallel is None else parallel
        current = initial_turn
        contexts: list[ExecutionContext] = []
        iterations = 0
        stop_reason: StopReason = "completed"
        logger.info("Starting orchestration (max %d iterations)", max_iterations)

        try:
            while True:
                tool_calls = current.pending_tool_calls
                if not tool_calls:
                    if current.metadata.finish_reason == "error":
                        stop_reason = "error"
                    break
                if iterations >= max_iterations:
                    stop_reason = "max_iterations"
                    logger.warning(
                        "Maximum iterations (%d) reached with %d tool call(s) pending",
                        max_iterations, len(tool_calls),
                    )
                    break
                if cancel is not None:
                    cancel.raise_if_cancelled()

                iterations += 1
                self._emit(on_progress, ProgressEventType.ITERATION_START, iterations)
                self._emit(on_progress, ProgressEventType.TOOLS_DETECTED, iterations,
                           tool_count=len(tool_calls))
                for call in tool_calls:
                    self._emit(on_progress, ProgressEventType.TOOL_EXECUTING, iterations,
                               tool_name=call.name, tool_call_id=call.id)

                result = await self._execute_tools(
                    tool_calls, conversation_hint, use_parallel, on_progress, iterations, cancel,
                )
                contexts.extend(result.contexts)
                if cancel is not None and cancel.cancelled:
                    raise OperationCancelledError(cancel.reason or "Cancelled")
                if not result.all_approved:
                    logger.info("Some tool calls were rejected; sending rejection feedback")

                feedback = [tool_result_message(ctx) for ctx in result.contexts]
                current = await self._continue_with_results(feedback, on_stream_chunk, cancel)
                self._emit(on_progress, ProgressEventType.ITERATION_COMPLETE, iterations,
                           tool_count=len(result.contexts))
        except OperationCancelledError as exc:
            logger.info("Orchestration cancelled after %d iteration(s): %s", iterations, exc)
            stop_reason = "cancelled"

        self._emit(
            on_progress,
            ProgressEventType.ORCHESTRATION_COMPLETE,
            iterations,
            message=stop_reason,
            data={"stop_reason": stop_reason, "tools_executed": len(contexts)},
        )
        logger.info(
            "Orchestration finished: %s after %d iteration(s), %d tool call(s)",
            stop_reason, iterations, len(contexts),
        )
        return OrchestrationResult(
            final_turn=current,
            execution_contexts=tuple(contexts),
            iterations=iterations,
            stop_reason=stop_reason,
        )

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tools(
        self,
        tool_calls: Sequence[ToolCall],
        conversation_hint: str | None,
        parallel: bool,
        on_progress: ProgressCallback | None,
        iteration: int,
        cancel: CancellationToken | None,
    ) -> PipelineResult:
        def on_update(ctx: ExecutionContext) -> None:
            if not ctx.is_finished():
                return
            event = (
                ProgressEventType.TOOL_COMPLETED if ctx.is_completed()
                else ProgressEventType.TOOL_FAILED
            )
            self._emit(on_progress, event, iteration, tool_name=ctx.tool_call.name,
                       tool_call_id=ctx.tool_call.id, context=ctx,
                       message=ctx.error)

        run = self._pipeline.execute_parallel if parallel else self._pipeline.execute
        return await run(tool_calls, conversation_hint, on_update=on_update, cancel=cancel)

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------

    async def _continue_with_results(
        self,
        feedback: list[Message],
        on_stream_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
    ) -> Turn:
        """Resubmit tool results and wrap the next response in a new turn."""
        context = await self._context.messages_for_model(
            self._config.context_window_tokens, self._config.compression_threshold, cancel=cancel,
        )
        for message in feedback:
            await self._history.add_message(message)

        response, metadata = await self._call_backend(
            (*context, *feedback), on_stream_chunk, cancel, with_context=False,
        )
        request = Message.user(
            "\n\n".join(m.content for m in feedback),
            metadata={
                "is_tool_result": True,
                "tool_call_ids": [m.metadata["tool_call_id"] for m in feedback],
            },
        )
        return (
            Turn.create(request)
            .with_response(response)
            .with_tool_calls(response.tool_calls)
            .with_metadata(**_metadata_fields(metadata))
        )

    async def _call_backend(
        self,
        messages: Sequence[Message],
        on_stream_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
        *,
        with_context: bool = True,
    ) -> tuple[Message, TurnMetadata]:
        """Call the backend and append its response to history.

        Backend failures do not propagate: they come back as an assistant
        message flagged ``is_error`` with ``finish_reason="error"``.
        """
        cfg = self._config
        if with_context:
            context = await self._context.messages_for_model(
                cfg.context_window_tokens, cfg.compression_threshold, cancel=cancel,
            )
            messages = (*context, *messages)

        request = ApiRequest(
            messages=tuple(messages),
            model=cfg.model,
            max_tokens=cfg.max_tokens,
            temperature=cfg.temperature,
            tools=tuple(self._registry.definitions()),
            system_prompt=cfg.system_prompt,
        )
        started = time.monotonic()
        try:
            if cancel is None:
                api_response = await self._send(request, on_stream_chunk)
            else:
                with cancel.guard():
                    api_response = await self._send(request, on_stream_chunk)
        except OperationCancelledError:
            raise
        except Exception as exc:
            logger.exception("Backend call failed")
            duration = time.monotonic() - started
            record_backend_latency(duration * 1000, model=cfg.model or "", is_error=True)
            message = Message.assistant(
                f"Error: {exc}",
                metadata={"is_error": True, "finish_reason": "error"},
            )
            await self._history.add_message(message)
            return message, TurnMetadata(
                duration=duration,
                model=cfg.model,
                finish_reason="error",
            )

        duration = time.monotonic() - started
        model = api_response.model or cfg.model or ""
        record_backend_latency(duration * 1000, model=model)
        metadata: dict[str, Any] = {
            "model": api_response.model,
            "finish_reason": api_response.finish_reason,
        }
        usage = api_response.usage
        if usage is not None:
            record_tokens(usage.prompt_tokens, usage.completion_tokens, model=model)
            metadata["usage"] = usage.to_dict()
        message = Message.assistant(api_response.content, api_response.tool_calls, metadata)
        await self._history.add_message(message)
        logger.debug(
            "Backend replied in %.2fs with %d tool call(s)", duration, len(api_response.tool_calls),
        )
        return message, TurnMetadata(
            duration=duration,
            token_usage=api_response.usage,
            model=api_response.model,
            finish_reason=api_response.finish_reason,
        )

    async def _send(self, request: ApiRequest, on_stream_chunk: ChunkCallback | None) -> Any:
        if on_stream_chunk is None:
            return await self._client.chat(request)

        def on_chunk(chunk: StreamChunk) -> None:
            try:
                on_stream_chunk(chunk)
            except Exception:
                logger.warning("Stream chunk callback failed", exc_info=True)

        return await self._client.stream_chat(request, on_chunk)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _emit(
        self,
        callback: ProgressCallback | None,
        event_type: ProgressEventType,
        iteration: int,
        **fields: Any,
    ) -> None:
        if callback is None:
            return
        event = ProgressEvent(
            type=event_type,
            iteration=iteration,
            max_iterations=self._config.max_iterations,
            **fields,
        )
        try:
            callback(event)
        except Exception:
            logger.warning("Progress callback failed on %s", event_type.value, exc_info=True)


def _metadata_fields(metadata: TurnMetadata) -> dict[str, Any]:
    return {
        "duration": metadata.duration,
        "token_usage": metadata.token_usage,
        "model": metadata.model,
        "finish_reason": metadata.finish_reason,
    }
