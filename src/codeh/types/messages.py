"""Message types for the conversation history."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal

MessageRole = Literal["user", "assistant", "system", "error"]

ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "error"})


def new_id(prefix: str) -> str:
    """Generate a short unique identifier such as ``msg_3f2a9c1b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A model-requested invocation of a named capability."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in a conversation.

    Messages are never mutated. Streaming accumulation goes through
    :meth:`with_content` / :meth:`append_content`, which return a new message
    that keeps the original id.
    """

    id: str
    role: MessageRole
    content: str
    timestamp: datetime
    tool_calls: tuple[ToolCall, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        role: MessageRole,
        content: str,
        *,
        tool_calls: list[ToolCall] | tuple[ToolCall, ...] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=new_id("msg"),
            role=role,
            content=content,
            timestamp=datetime.now(UTC),
            tool_calls=tuple(tool_calls or ()),
            metadata=dict(metadata or {}),
        )

    @classmethod
    def user(cls, content: str, metadata: dict[str, Any] | None = None) -> Message:
        return cls.create("user", content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: list[ToolCall] | tuple[ToolCall, ...] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        return cls.create("assistant", content, tool_calls=tool_calls, metadata=metadata)

    @classmethod
    def system(cls, content: str, metadata: dict[str, Any] | None = None) -> Message:
        return cls.create("system", content, metadata=metadata)

    @classmethod
    def error(cls, error: BaseException | str) -> Message:
        content = error if isinstance(error, str) else str(error)
        return cls.create("error", content)

    # -- Updates (copy, same id) ------------------------------------------

    def with_content(self, content: str) -> Message:
        return replace(self, content=content)

    def append_content(self, chunk: str) -> Message:
        return replace(self, content=self.content + chunk)

    def with_tool_calls(self, tool_calls: list[ToolCall] | tuple[ToolCall, ...]) -> Message:
        return replace(self, tool_calls=tuple(tool_calls))

    def with_metadata(self, **metadata: Any) -> Message:
        return replace(self, metadata={**self.metadata, **metadata})

    # -- Queries ----------------------------------------------------------

    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def is_user(self) -> bool:
        return self.role == "user"

    def is_assistant(self) -> bool:
        return self.role == "assistant"

    def is_system(self) -> bool:
        return self.role == "system"

    def is_error(self) -> bool:
        return self.role == "error" or bool(self.metadata.get("is_error"))

    # -- Serialization ----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            role=data["role"],
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            tool_calls=tuple(ToolCall.from_dict(tc) for tc in data.get("tool_calls") or ()),
            metadata=dict(data.get("metadata") or {}),
        )
