"""Session/history collaborator protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from codeh.types.messages import Message

if TYPE_CHECKING:
    from codeh.core.session import Session


@runtime_checkable
class HistoryRepository(Protocol):
    """Storage for the active session's messages."""

    async def add_message(self, message: Message) -> None:
        """Append a message to the active session."""
        ...

    async def get_recent_messages(self, limit: int) -> list[Message]:
        """Return up to *limit* most recent messages, oldest first."""
        ...

    async def get_current_session(self) -> Session | None:
        """Return the active session, or None when there is none."""
        ...

    async def save_session(self, session: Session) -> None:
        """Persist *session* (including compression bookkeeping)."""
        ...
