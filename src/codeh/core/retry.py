"""Bounded retry with exponential backoff for fallible async operations."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import anyio

from codeh.core.cancellation import CancellationToken
from codeh.errors import ExecutionTimeoutError, OperationCancelledError
from codeh.types.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]
RetryCallback = Callable[[BaseException, int, float], Any]

# Status codes worth retrying on: rate limits and server overload.
_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504, 529})


def always_retry(exc: BaseException, attempt: int) -> bool:
    return True


def never_retry(exc: BaseException, attempt: int) -> bool:
    return False


def transient_errors(exc: BaseException, attempt: int) -> bool:
    """Return True when *exc* looks like a transient network/backend error."""
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    status_code: int | None = getattr(exc, "status_code", None)
    return status_code is not None and status_code in _RETRYABLE_STATUS_CODES


@dataclass(slots=True)
class RetryResult(Generic[T]):
    """Outcome of :meth:`RetryExecutor.execute`."""

    success: bool
    value: T | None = None
    attempts: int = 0
    total_time: float = 0.0  # seconds
    error: BaseException | None = None
    delays_ms: list[float] = field(default_factory=list)

    @property
    def error_message(self) -> str | None:
        if self.success or self.error is None:
            return None
        return f"Failed after {self.attempts} attempt(s): {self.error}"


class RetryExecutor:
    """Runs an async operation up to ``max_retries + 1`` times.

    Each retry waits ``min(backoff, max_backoff_ms)``; the backoff doubles after
    every failure with +/- ``jitter`` randomness, and the uncapped value keeps
    growing so delays never decrease.

    Usage::

        executor = RetryExecutor()
        result = await executor.execute(lambda: client.chat(request), RETRY_STANDARD)
        if not result.success:
            print(result.error_message)
    """

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._sleep = sleep or anyio.sleep
        self._rng = rng or random.Random()

    def next_backoff(self, current_ms: float, policy: RetryPolicy) -> float:
        """Double *current_ms* and apply jitter. The result is not capped."""
        factor = 1.0 + self._rng.uniform(-policy.jitter, policy.jitter)
        return current_ms * 2.0 * factor

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        should_retry: RetryPredicate = always_retry,
        timeout: float | None = None,
        operation: str = "operation",
        on_retry: RetryCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> RetryResult[T]:
        """Call *fn* until it succeeds, retries run out, or *should_retry* says stop.

        A call that exceeds *timeout* seconds counts as a failure
        (:class:`~codeh.errors.ExecutionTimeoutError`) and is retried like any
        other. Cancellation is never retried.
        """
        policy = policy or RetryPolicy()
        if cancel is None:
            return await self._run(fn, policy, should_retry, timeout, operation, on_retry)
        with cancel.guard():
            return await self._run(fn, policy, should_retry, timeout, operation, on_retry)

    async def execute_or_raise(
        self,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        **kwargs: Any,
    ) -> T:
        """Like :meth:`execute` but returns the value or raises the last error."""
        result = await self.execute(fn, policy, **kwargs)
        if not result.success:
            assert result.error is not None
            raise result.error
        return result.value  # type: ignore[return-value]

    async def _run(
        self,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        should_retry: RetryPredicate,
        timeout: float | None,
        operation: str,
        on_retry: RetryCallback | None,
    ) -> RetryResult[T]:
        started = time.monotonic()
        backoff = float(policy.initial_backoff_ms)
        delays: list[float] = []
        last_error: BaseException | None = None
        attempts = 0

        for attempt in range(policy.max_retries + 1):
            attempts += 1
            try:
                value = await self._attempt(fn, timeout, operation)
                return RetryResult(
                    success=True,
                    value=value,
                    attempts=attempts,
                    total_time=time.monotonic() - started,
                    delays_ms=delays,
                )
            except OperationCancelledError:
                raise
            except Exception as exc:
                last_error = exc

            if not should_retry(last_error, attempt):
                logger.debug(
                    "%s failed with non-retryable %s", operation, type(last_error).__name__,
                )
                break
            if attempt == policy.max_retries:
                break

            delay = min(backoff, policy.max_backoff_ms)
            delays.append(delay)
            logger.warning(
                "%s failed on attempt %d/%d (%s). Retrying in %.0fms.",
                operation,
                attempts,
                policy.max_retries + 1,
                last_error,
                delay,
            )
            if on_retry is not None:
                on_retry(last_error, attempts, delay)
            await self._sleep(delay / 1000)
            backoff = self.next_backoff(backoff, policy)

        return RetryResult(
            success=False,
            attempts=attempts,
            total_time=time.monotonic() - started,
            error=last_error,
            delays_ms=delays,
        )

    @staticmethod
    async def _attempt(
        fn: Callable[[], Awaitable[T]],
        timeout: float | None,
        operation: str,
    ) -> T:
        if timeout is None:
            return await fn()
        try:
            with anyio.fail_after(timeout):
                return await fn()
        except TimeoutError as exc:
            if isinstance(exc, ExecutionTimeoutError):
                raise
            raise ExecutionTimeoutError(operation, timeout) from exc
