"""Session aggregate: ordered messages plus compression bookkeeping."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from codeh.types.messages import Message, new_id

CHARS_PER_TOKEN = 4

# Rough blended price used for the session's cost estimate
COST_PER_1K_TOKENS = 0.005


def new_session_id() -> str:
    """Generate a new session ID."""
    return new_id("session")


def estimate_tokens(messages: list[Message] | tuple[Message, ...]) -> int:
    """Estimate tokens as ``ceil(total_characters / 4)``."""
    total_chars = sum(len(m.content) for m in messages)
    return math.ceil(total_chars / CHARS_PER_TOKEN)


@dataclass(slots=True)
class SessionMetadata:
    """Counters and compression markers for a session."""

    message_count: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    last_compressed_index: int | None = None  # inclusive
    compressed_message_id: str | None = None


class Session:
    """Mutable conversation session.

    Messages at index <= ``metadata.last_compressed_index`` are represented to
    the model only through the compressed summary message.
    """

    def __init__(
        self,
        model: str = "",
        *,
        session_id: str | None = None,
        name: str = "Untitled Session",
        messages: list[Message] | None = None,
        metadata: SessionMetadata | None = None,
        compressed_message: Message | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        now = datetime.now(UTC)
        self.session_id = session_id or new_session_id()
        self.name = name
        self._messages: list[Message] = list(messages or [])
        self.metadata = metadata or SessionMetadata(model=model)
        self._compressed_message = compressed_message
        self.created_at = created_at or now
        self.updated_at = updated_at or now
        self.update_metadata()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        self._messages.append(message)
        self._touch()
        self.update_metadata()

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def last_message(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def last_n_messages(self, n: int) -> list[Message]:
        if n <= 0:
            return []
        return self._messages[-n:]

    def messages_for_model(self) -> list[Message]:
        """Return ``[summary, *messages after the boundary]``, or all messages."""
        boundary = self.metadata.last_compressed_index
        if boundary is not None and self._compressed_message is not None:
            return [self._compressed_message, *self._messages[boundary + 1:]]
        return list(self._messages)

    def clear(self) -> None:
        """Drop all messages and any compression state."""
        self._messages.clear()
        self._compressed_message = None
        self.metadata.last_compressed_index = None
        self.metadata.compressed_message_id = None
        self._touch()
        self.update_metadata()

    # ------------------------------------------------------------------
    # Compression
    # ------------------------------------------------------------------

    def set_compressed_message(self, summary: Message, compressed_up_to: int) -> None:
        """Store *summary* as the stand-in for messages ``[0..compressed_up_to]``."""
        if not 0 <= compressed_up_to < len(self._messages):
            raise IndexError(
                f"compressed_up_to={compressed_up_to} outside 0..{len(self._messages) - 1}",
            )
        self._compressed_message = summary
        self.metadata.last_compressed_index = compressed_up_to
        self.metadata.compressed_message_id = summary.id
        self._touch()

    def restore_compression(self, summary: Message | None, compressed_up_to: int | None) -> None:
        """Put back compression state captured earlier; ``None`` clears it."""
        if summary is None or compressed_up_to is None:
            self._compressed_message = None
            self.metadata.last_compressed_index = None
            self.metadata.compressed_message_id = None
            return
        self.set_compressed_message(summary, compressed_up_to)

    @property
    def compressed_message(self) -> Message | None:
        return self._compressed_message

    def has_compression(self) -> bool:
        return self._compressed_message is not None

    # ------------------------------------------------------------------
    # Tokens and cost
    # ------------------------------------------------------------------

    def estimate_tokens(self) -> int:
        return estimate_tokens(self._messages)

    def update_metadata(self) -> None:
        """Recompute message count, reported token usage and cost estimate."""
        total = 0
        for msg in self._messages:
            usage = msg.metadata.get("usage")
            if isinstance(usage, dict):
                total += int(usage.get("total_tokens", 0))
        self.metadata.message_count = len(self._messages)
        self.metadata.total_tokens = total
        self.metadata.estimated_cost = total / 1000 * COST_PER_1K_TOKENS

    def _touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "name": self.name,
            "messages": [m.to_dict() for m in self._messages],
            "metadata": asdict(self.metadata),
            "compressed_message": (
                self._compressed_message.to_dict() if self._compressed_message else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        compressed = data.get("compressed_message")
        return cls(
            session_id=data["id"],
            name=data.get("name", "Untitled Session"),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            metadata=SessionMetadata(**data.get("metadata", {})),
            compressed_message=Message.from_dict(compressed) if compressed else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def __repr__(self) -> str:
        return (
            f"Session(id={self.session_id!r}, messages={len(self._messages)}, "
            f"compressed_up_to={self.metadata.last_compressed_index})"
        )
