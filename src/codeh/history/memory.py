"""In-process history repository."""

from __future__ import annotations

import logging

from codeh.core.session import Session
from codeh.types.messages import Message

logger = logging.getLogger(__name__)


class InMemoryHistory:
    """Keeps sessions in a dict; nothing survives the process.

    ``add_message`` starts a session on demand, so a fresh repository can be
    handed straight to an orchestrator.
    """

    def __init__(self, model: str = "") -> None:
        self._model = model
        self._sessions: dict[str, Session] = {}
        self._current: Session | None = None

    def start_new_session(
        self, model: str | None = None, name: str = "Untitled Session",
    ) -> Session:
        session = Session(model if model is not None else self._model, name=name)
        self._sessions[session.session_id] = session
        self._current = session
        logger.debug("Started session %s", session.session_id)
        return session

    def switch_session(self, session_id: str) -> Session:
        try:
            self._current = self._sessions[session_id]
        except KeyError:
            raise KeyError(f"No session with id {session_id!r}") from None
        return self._current

    def list_sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    async def add_message(self, message: Message) -> None:
        session = self._current or self.start_new_session()
        session.add_message(message)

    async def get_recent_messages(self, limit: int) -> list[Message]:
        if self._current is None:
            return []
        return self._current.last_n_messages(limit)

    async def get_current_session(self) -> Session | None:
        return self._current

    async def save_session(self, session: Session) -> None:
        self._sessions[session.session_id] = session
