"""JSONL append-only history persistence."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from codeh.core.session import Session, new_session_id
from codeh.types.messages import Message

logger = logging.getLogger(__name__)


def _sessions_dir() -> Path:
    """Get the sessions directory, creating it if needed."""
    d = Path.home() / ".codeh" / "sessions"
    d.mkdir(parents=True, exist_ok=True)
    return d


def _session_path(session_id: str) -> Path:
    return _sessions_dir() / f"{session_id}.jsonl"


def load_session(session_id: str) -> Session:
    """Replay a session's JSONL file.

    Entries are ``metadata`` (name, model, created_at), ``message`` (one
    message each) and ``compression`` (summary plus boundary; the last one
    wins).
    """
    path = _session_path(session_id)
    meta: dict[str, Any] = {}
    messages: list[Message] = []
    compression: dict[str, Any] | None = None

    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            entry = json.loads(line)
            kind = entry.get("type")
            if kind == "metadata":
                meta.update(entry.get("data", {}))
            elif kind == "message":
                messages.append(Message.from_dict(entry["data"]))
            elif kind == "compression":
                compression = entry["data"]

    created = meta.get("created_at")
    updated = meta.get("updated_at", created)
    session = Session(
        meta.get("model", ""),
        session_id=session_id,
        name=meta.get("name", "Untitled Session"),
        messages=messages,
        created_at=datetime.fromisoformat(created) if created else None,
        updated_at=datetime.fromisoformat(updated) if updated else None,
    )
    if compression is not None:
        session.set_compressed_message(
            Message.from_dict(compression["summary"]),
            compression["compressed_up_to"],
        )
    return session


def list_sessions() -> list[dict[str, Any]]:
    """List saved sessions, newest first, as ``{session_id, name, model, ...}`` dicts."""
    results = []
    paths = sorted(_sessions_dir().glob("*.jsonl"), key=lambda p: p.stat().st_mtime, reverse=True)
    for path in paths:
        try:
            session = load_session(path.stem)
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Skipping unreadable session file %s: %s", path, exc)
            continue
        results.append({
            "session_id": session.session_id,
            "name": session.name,
            "model": session.metadata.model,
            "message_count": session.message_count,
            "updated_at": session.updated_at.isoformat(),
        })
    return results


class JsonlHistory:
    """History repository backed by one append-only JSONL file per session.

    Messages are appended as they arrive; :meth:`save_session` records the
    compression boundary when it has moved since the last save.
    """

    def __init__(
        self, session_id: str | None = None, model: str = "", name: str = "Untitled Session",
    ):
        if session_id and _session_path(session_id).exists():
            self._session = load_session(session_id)
            self._saved_boundary = self._session.metadata.last_compressed_index
        else:
            self._session = Session(model, session_id=session_id or new_session_id(), name=name)
            self._saved_boundary = None
            self._write_metadata()

    @property
    def path(self) -> Path:
        return _session_path(self._session.session_id)

    def _append(self, entry: dict[str, Any]) -> None:
        """Append an entry to the JSONL file."""
        with open(self.path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def _write_metadata(self) -> None:
        self._append({
            "type": "metadata",
            "data": {
                "session_id": self._session.session_id,
                "name": self._session.name,
                "model": self._session.metadata.model,
                "created_at": self._session.created_at.isoformat(),
                "updated_at": datetime.now(UTC).isoformat(),
            },
        })

    async def add_message(self, message: Message) -> None:
        self._session.add_message(message)
        self._append({"type": "message", "data": message.to_dict()})

    async def get_recent_messages(self, limit: int) -> list[Message]:
        return self._session.last_n_messages(limit)

    async def get_current_session(self) -> Session | None:
        return self._session

    async def save_session(self, session: Session) -> None:
        if session is not self._session:
            raise ValueError(
                f"JsonlHistory for {self._session.session_id} "
                f"cannot save session {session.session_id}",
            )
        boundary = session.metadata.last_compressed_index
        summary = session.compressed_message
        if summary is not None and boundary is not None and boundary != self._saved_boundary:
            self._append({
                "type": "compression",
                "data": {"summary": summary.to_dict(), "compressed_up_to": boundary},
            })
            self._saved_boundary = boundary
        self._write_metadata()
