"""Context window management: token estimation and compression."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from codeh.core.cancellation import CancellationToken
from codeh.core.compression import CompressionResult, MessageCompressor
from codeh.core.session import Session, estimate_tokens
from codeh.errors import OperationCancelledError
from codeh.observability.metrics import record_compression
from codeh.types.history import HistoryRepository
from codeh.types.messages import Message
from codeh.types.providers import ModelClient

logger = logging.getLogger(__name__)

# Compression triggers above this fraction of the token budget
DEFAULT_COMPRESSION_THRESHOLD = 0.8

# Fraction of the token budget the summary itself may use
SUMMARY_BUDGET_FRACTION = 0.3

# Most recent messages that always stay verbatim
DEFAULT_KEEP_RECENT = 3


@dataclass(frozen=True, slots=True)
class ContextStats:
    message_count: int
    estimated_tokens: int
    threshold_tokens: float
    has_compression: bool

    @property
    def needs_compression(self) -> bool:
        return self.estimated_tokens > self.threshold_tokens


class ContextWindowManager:
    """Keeps the messages sent to the model within a token budget.

    Older messages are folded into a summary produced by
    :class:`~codeh.core.compression.MessageCompressor` once the estimate
    crosses ``max_tokens * compression_threshold``. Calls below the threshold
    have no side effects.
    """

    def __init__(
        self,
        history: HistoryRepository,
        client: ModelClient,
        *,
        keep_recent_count: int = DEFAULT_KEEP_RECENT,
        compressor: MessageCompressor | None = None,
    ) -> None:
        self._history = history
        self._compressor = compressor or MessageCompressor(client)
        self.keep_recent_count = keep_recent_count

    async def stats(
        self,
        max_tokens: int,
        compression_threshold: float = DEFAULT_COMPRESSION_THRESHOLD,
    ) -> ContextStats | None:
        session = await self._history.get_current_session()
        if session is None:
            return None
        messages = session.messages_for_model()
        return ContextStats(
            message_count=len(messages),
            estimated_tokens=estimate_tokens(messages),
            threshold_tokens=max_tokens * compression_threshold,
            has_compression=session.has_compression(),
        )

    async def messages_for_model(
        self,
        max_tokens: int,
        compression_threshold: float = DEFAULT_COMPRESSION_THRESHOLD,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[Message]:
        """Return the session's model view, compressing it first if it is too large.

        A summary request in flight is interrupted by *cancel* and
        :class:`~codeh.errors.OperationCancelledError` propagates.
        """
        session = await self._history.get_current_session()
        if session is None:
            logger.warning("No active session; returning empty context")
            return []

        messages = session.messages_for_model()
        estimated = estimate_tokens(messages)
        threshold = max_tokens * compression_threshold
        if estimated <= threshold:
            logger.debug("Context at ~%d/%d tokens, no compression needed", estimated, max_tokens)
            return messages

        logger.info(
            "Context at ~%d tokens exceeds threshold %.0f, compressing", estimated, threshold,
        )
        return await self._compress(session, max_tokens, cancel)

    async def _compress(
        self, session: Session, max_tokens: int, cancel: CancellationToken | None,
    ) -> list[Message]:
        all_messages = session.messages
        last = session.metadata.last_compressed_index
        start = 0 if last is None else last + 1
        end = max(start, len(all_messages) - self.keep_recent_count)
        uncompressed = session.messages_for_model()

        if end <= start:
            logger.warning(
                "Not enough messages to compress (start=%d, end=%d, total=%d)",
                start, end, len(all_messages),
            )
            return uncompressed

        previous = session.compressed_message
        try:
            result = await self._summarize(
                all_messages[start:end], math.floor(max_tokens * SUMMARY_BUDGET_FRACTION),
                previous, cancel,
            )
            session.set_compressed_message(result.compressed_message, end - 1)
            await self._history.save_session(session)
        except OperationCancelledError:
            session.restore_compression(previous, last)
            raise
        except Exception:
            logger.exception("Compression failed, returning uncompressed messages")
            session.restore_compression(previous, last)
            return uncompressed

        record_compression(result.original_tokens, result.compressed_tokens)
        logger.info(
            "Compressed messages %d..%d (%d -> %d tokens)",
            start, end - 1, result.original_tokens, result.compressed_tokens,
        )
        return session.messages_for_model()

    async def _summarize(
        self,
        messages: list[Message],
        budget: int,
        previous: Message | None,
        cancel: CancellationToken | None,
    ) -> CompressionResult:
        if cancel is None:
            return await self._compressor.compress(messages, budget, previous_summary=previous)
        with cancel.guard():
            return await self._compressor.compress(messages, budget, previous_summary=previous)
