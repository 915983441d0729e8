"""Model-assisted summarization of older conversation messages."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from codeh.core.session import CHARS_PER_TOKEN, estimate_tokens
from codeh.errors import CompressionError
from codeh.types.messages import Message
from codeh.types.providers import ApiRequest, ModelClient

logger = logging.getLogger(__name__)

COMPRESSION_SYSTEM_PROMPT = """\
You are a conversation summarizer. Your task is to compress a conversation history into a concise summary while preserving all important information, context, decisions, and key details.

Rules:
- Preserve all technical details, code snippets, file paths, and specific information
- Maintain chronological order of important events
- Keep user requests and assistant responses clearly separated
- Use bullet points for clarity
- Be concise but comprehensive
- Do not lose any critical context that might be needed for future messages

Format the summary as:
## Conversation Summary
[Your compressed summary here]"""

# Low temperature keeps summaries consistent between runs
COMPRESSION_TEMPERATURE = 0.3


@dataclass(frozen=True, slots=True)
class CompressionResult:
    compressed_message: Message
    compressed_count: int
    original_tokens: int
    compressed_tokens: int

    @property
    def ratio(self) -> float:
        if self.original_tokens == 0:
            return 0.0
        return self.compressed_tokens / self.original_tokens


def build_conversation_text(messages: Sequence[Message]) -> str:
    """Render messages as numbered ``[i] ROLE (timestamp):`` blocks."""
    return "\n---\n\n".join(
        f"[{index}] {msg.role.upper()} ({msg.timestamp.isoformat()}):\n{msg.content}\n"
        for index, msg in enumerate(messages, start=1)
    )


class MessageCompressor:
    """Asks the model backend to replace a run of messages with one summary.

    The summary comes back as a ``system`` message whose metadata records what
    it stands in for (``is_compressed``, ``compressed_count``,
    ``compressed_message_ids``, token counts and ``compressed_at``).
    """

    def __init__(self, client: ModelClient, *, model: str | None = None) -> None:
        self._client = client
        self._model = model

    async def compress(
        self,
        messages: Sequence[Message],
        max_tokens: int = 4000,
        previous_summary: Message | None = None,
    ) -> CompressionResult:
        """Summarize *messages* into at most roughly *max_tokens* tokens.

        When *previous_summary* is given it is placed ahead of the messages so
        the new summary supersedes it.

        Raises:
            ValueError: *messages* is empty.
            CompressionError: the backend call failed.
        """
        if not messages:
            raise ValueError("Cannot compress an empty message list")

        original_tokens = estimate_tokens(list(messages))
        source = list(messages)
        if previous_summary is not None:
            source.insert(0, previous_summary)
        text = build_conversation_text(source)
        logger.info(
            "Compressing %d message(s) (~%d tokens, summary budget %d)",
            len(messages), original_tokens, max_tokens,
        )

        request = ApiRequest(
            messages=(
                Message.user(f"Please compress the following conversation history:\n\n{text}"),
            ),
            model=self._model,
            max_tokens=max_tokens,
            temperature=COMPRESSION_TEMPERATURE,
            system_prompt=COMPRESSION_SYSTEM_PROMPT,
        )
        try:
            response = await self._client.chat(request)
        except Exception as exc:
            logger.exception("Compression of %d message(s) failed", len(messages))
            raise CompressionError(
                f"Failed to compress messages: {exc}", message_count=len(messages),
            ) from exc

        content = response.content
        compressed_tokens = math.ceil(len(content) / CHARS_PER_TOKEN)
        ids = [m.id for m in messages]
        if previous_summary is not None:
            ids = [*previous_summary.metadata.get("compressed_message_ids", []), *ids]

        summary = Message.system(
            content,
            metadata={
                "is_compressed": True,
                "compressed_count": len(ids),
                "original_tokens": original_tokens,
                "compressed_tokens": compressed_tokens,
                "compressed_at": datetime.now(UTC).isoformat(),
                "compressed_message_ids": ids,
            },
        )
        result = CompressionResult(
            compressed_message=summary,
            compressed_count=len(messages),
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
        )
        logger.info(
            "Compressed %d message(s): %d -> %d tokens (%.1f%%)",
            len(messages), original_tokens, compressed_tokens, result.ratio * 100,
        )
        return result
