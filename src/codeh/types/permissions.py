"""Permission collaborator protocol and value types."""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from codeh.types.messages import ToolCall


class PermissionMode(Enum):
    """Default answer for tools without a pre-approval."""

    AUTO_APPROVE = "auto_approve"  # Approve everything not denied
    REQUIRE_APPROVAL = "require_approval"  # Only pre-approved tools
    DENY_BY_DEFAULT = "deny_by_default"  # Deny everything not pre-approved


@dataclass(frozen=True, slots=True)
class PermissionResult:
    """Answer to a permission request."""

    approved: bool
    reason: str | None = None
    remember_choice: bool = False  # "always allow" for this tool


@dataclass(frozen=True, slots=True)
class PermissionRequest:
    """Everything a handler needs to decide on one tool call."""

    tool_call: ToolCall
    tool_description: str | None = None
    conversation_hint: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class PermissionHandler(Protocol):
    """Protocol for permission collaborators.

    ``request_permission`` may answer synchronously or return an awaitable.
    """

    def has_pre_approval(self, tool_name: str) -> bool:
        ...

    def request_permission(
        self, request: PermissionRequest,
    ) -> PermissionResult | Awaitable[PermissionResult]:
        ...

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        ...

    async def clear_preferences(self) -> None:
        ...
