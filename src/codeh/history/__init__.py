"""History repositories."""

from codeh.history.jsonl import JsonlHistory, list_sessions, load_session
from codeh.history.memory import InMemoryHistory

__all__ = ["InMemoryHistory", "JsonlHistory", "list_sessions", "load_session"]
