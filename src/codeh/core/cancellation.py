"""Cooperative cancellation for an in-progress orchestration."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import anyio

from codeh.errors import OperationCancelledError


class CancellationToken:
    """Lets a caller abort an orchestration from outside.

    Work that should be interruptible runs inside :meth:`guard`, which opens an
    anyio cancel scope registered with the token. :meth:`cancel` cancels every
    open scope, so an awaiting backend call, permission prompt, backoff sleep or
    tool execution stops at its next checkpoint and
    :class:`~codeh.errors.OperationCancelledError` is raised from the guard.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._scopes: set[anyio.CancelScope] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Request cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        for scope in list(self._scopes):
            scope.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason or "Cancelled")

    @contextmanager
    def guard(self) -> Iterator[anyio.CancelScope]:
        """Run the enclosed block so that :meth:`cancel` can interrupt it."""
        self.raise_if_cancelled()
        with anyio.CancelScope() as scope:
            self._scopes.add(scope)
            try:
                yield scope
            finally:
                self._scopes.discard(scope)
        if scope.cancelled_caught or self._cancelled:
            raise OperationCancelledError(self._reason or "Cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
