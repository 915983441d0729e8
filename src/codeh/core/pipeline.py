"""Permission and retry pipeline for model-requested tool calls.

Each call moves through its :class:`~codeh.types.execution.ExecutionContext`
state machine: pre-approval or a permission request, then execution through
the registry wrapped by the retry executor. The pipeline never raises for a
single call's problems; every outcome, including a cancelled call, ends up as a
terminal context in the result.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import anyio

from codeh.core.cancellation import CancellationToken
from codeh.core.retry import RetryExecutor
from codeh.errors import ExecutionTimeoutError, OperationCancelledError, ToolExecutionError
from codeh.observability.metrics import record_tool_call
from codeh.tools.registry import ToolRegistry
from codeh.types.config import RetryPolicy
from codeh.types.execution import ExecutionContext, ExecutionStatus
from codeh.types.messages import ToolCall
from codeh.types.permissions import PermissionHandler, PermissionRequest, PermissionResult
from codeh.types.tools import ToolExecutionResult

logger = logging.getLogger(__name__)

ContextCallback = Callable[[ExecutionContext], Any]


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Terminal contexts, index-aligned with the input tool calls."""

    contexts: tuple[ExecutionContext, ...]

    @property
    def all_approved(self) -> bool:
        return all(not c.is_rejected() for c in self.contexts)

    @property
    def all_completed(self) -> bool:
        return all(c.is_completed() for c in self.contexts)


def _record(ctx: ExecutionContext) -> None:
    duration = ctx.execution_duration()
    record_tool_call(
        ctx.tool_call.name,
        status=ctx.status.value,
        attempts=ctx.metadata.get("attempts", 0),
        duration_ms=duration * 1000 if duration is not None else None,
    )


def _is_retryable(exc: BaseException, attempt: int) -> bool:
    return isinstance(exc, (ToolExecutionError, ExecutionTimeoutError))


class _Tracker:
    """Holds the latest context for one call and reports each transition."""

    __slots__ = ("current", "_on_update")

    def __init__(self, context: ExecutionContext, on_update: ContextCallback | None) -> None:
        self.current = context
        self._on_update = on_update
        self._notify()

    def move(self, context: ExecutionContext) -> ExecutionContext:
        self.current = context
        self._notify()
        return context

    def _notify(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self.current)
        except Exception:
            logger.warning("Context update callback failed", exc_info=True)


class ToolCallPipeline:
    """Runs tool calls through permission checks and retried execution.

    Usage::

        pipeline = ToolCallPipeline(registry, ConfigurablePermissionHandler())
        result = await pipeline.execute(response.tool_calls)
        for ctx in result.contexts:
            print(ctx.tool_call.name, ctx.status.value)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        permission_handler: PermissionHandler,
        *,
        retry_policy: RetryPolicy | None = None,
        tool_timeout: float | None = None,
        retry_executor: RetryExecutor | None = None,
    ) -> None:
        self._registry = registry
        self._permissions = permission_handler
        self._policy = retry_policy or RetryPolicy()
        self._tool_timeout = tool_timeout
        self._retry = retry_executor or RetryExecutor()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        tool_calls: Iterable[ToolCall],
        conversation_hint: str | None = None,
        *,
        on_update: ContextCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineResult:
        """Process *tool_calls* one at a time, in input order."""
        contexts: list[ExecutionContext] = []
        for call in tool_calls:
            contexts.append(await self._process(call, conversation_hint, on_update, cancel, None))
        return PipelineResult(tuple(contexts))

    async def execute_parallel(
        self,
        tool_calls: Iterable[ToolCall],
        conversation_hint: str | None = None,
        *,
        on_update: ContextCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineResult:
        """Process *tool_calls* concurrently where their tools allow it.

        Calls to concurrency-safe tools each run in their own task. The rest
        run one after another, in input order, in a single task alongside
        them. Permission prompts are still asked one at a time, and a failing
        call never cancels its siblings. Results are index-aligned with
        *tool_calls*.
        """
        calls = list(tool_calls)
        results: list[ExecutionContext | None] = [None] * len(calls)
        permission_lock = anyio.Lock()
        serial = [
            index for index, call in enumerate(calls)
            if not self._registry.is_concurrency_safe(call.name)
        ]
        serial_set = set(serial)

        async def run_one(index: int) -> None:
            results[index] = await self._process(
                calls[index], conversation_hint, on_update, cancel, permission_lock,
            )

        async def run_serial() -> None:
            for index in serial:
                await run_one(index)

        logger.debug(
            "Running %d tool call(s): %d concurrent, %d sequential",
            len(calls), len(calls) - len(serial), len(serial),
        )
        async with anyio.create_task_group() as tg:
            for index in range(len(calls)):
                if index not in serial_set:
                    tg.start_soon(run_one, index)
            if serial:
                tg.start_soon(run_serial)

        return PipelineResult(tuple(ctx for ctx in results if ctx is not None))

    # ------------------------------------------------------------------
    # Per-call processing
    # ------------------------------------------------------------------

    async def _process(
        self,
        call: ToolCall,
        conversation_hint: str | None,
        on_update: ContextCallback | None,
        cancel: CancellationToken | None,
        permission_lock: anyio.Lock | None,
    ) -> ExecutionContext:
        tracker = _Tracker(ExecutionContext.create(call), on_update)
        try:
            if cancel is None:
                await self._advance(tracker, conversation_hint, permission_lock)
            else:
                with cancel.guard():
                    await self._advance(tracker, conversation_hint, permission_lock)
        except OperationCancelledError as exc:
            logger.info("Tool call %s (%s) cancelled", call.id, call.name)
            if not tracker.current.is_finished():
                tracker.move(tracker.current.with_error(str(exc)).with_metadata(cancelled=True))
        _record(tracker.current)
        return tracker.current

    async def _advance(
        self,
        tracker: _Tracker,
        conversation_hint: str | None,
        permission_lock: anyio.Lock | None,
    ) -> None:
        call = tracker.current.tool_call
        if not await self._authorize(tracker, conversation_hint, permission_lock):
            return

        tracker.move(tracker.current.with_execution_started())
        result, attempts = await self._run_tool(call)
        tracker.move(tracker.current.with_result(result).with_metadata(attempts=attempts))

    async def _authorize(
        self,
        tracker: _Tracker,
        conversation_hint: str | None,
        permission_lock: anyio.Lock | None,
    ) -> bool:
        """Move the context to approved, rejected or failed. True means approved."""
        call = tracker.current.tool_call
        try:
            if self._permissions.has_pre_approval(call.name):
                tracker.move(tracker.current.with_permission_granted())
                return True

            tracker.move(tracker.current.with_status(ExecutionStatus.AWAITING_PERMISSION))
            request = PermissionRequest(
                tool_call=call,
                tool_description=self._registry.describe(call.name),
                conversation_hint=conversation_hint,
            )
            if permission_lock is None:
                decision = await self._ask(request)
            else:
                async with permission_lock:
                    decision = await self._ask(request)
        except OperationCancelledError:
            raise
        except Exception as exc:
            logger.exception("Permission check for %s failed", call.name)
            tracker.move(tracker.current.with_error(f"Permission check failed: {exc}"))
            return False

        if not decision.approved:
            logger.info("Tool call %s rejected: %s", call.name, decision.reason)
            tracker.move(tracker.current.with_permission_rejected(decision.reason))
            return False

        if decision.remember_choice:
            try:
                await self._permissions.save_permission_preference(call.name, True)
            except Exception:
                logger.warning(
                    "Could not save permission preference for %s", call.name, exc_info=True,
                )
        tracker.move(tracker.current.with_permission_granted())
        return True

    async def _ask(self, request: PermissionRequest) -> PermissionResult:
        answer = self._permissions.request_permission(request)
        if inspect.isawaitable(answer):
            answer = await answer
        return answer

    async def _run_tool(self, call: ToolCall) -> tuple[ToolExecutionResult, int]:
        """Execute *call* through the registry with retries.

        Only raised exceptions and timeouts are retried. Not-found and
        invalid-parameter results, and failures a tool reports itself, come
        back after the first attempt.
        """

        async def attempt() -> ToolExecutionResult:
            result = await self._registry.execute(call.name, call.arguments)
            if result.error_type == "execution_error":
                raise ToolExecutionError(call.name, result.error or "unknown error")
            return result

        outcome = await self._retry.execute(
            attempt,
            self._policy,
            should_retry=_is_retryable,
            timeout=self._tool_timeout,
            operation=f"tool {call.name}",
        )
        if outcome.success:
            assert outcome.value is not None
            return outcome.value, outcome.attempts

        timed_out = isinstance(outcome.error, ExecutionTimeoutError)
        return (
            ToolExecutionResult.fail(
                outcome.error_message or "Tool execution failed",
                error_type="execution_error",
                metadata={"timed_out": timed_out} if timed_out else None,
            ),
            outcome.attempts,
        )
