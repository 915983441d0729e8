"""Interactive permission handling through an approval callback."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

import anyio.to_thread

from codeh.types.permissions import PermissionRequest, PermissionResult

logger = logging.getLogger(__name__)


@runtime_checkable
class ApprovalCallback(Protocol):
    """Protocol for asking the user about a tool call."""

    async def request_approval(
        self, tool_name: str, args: dict[str, Any], description: str,
    ) -> PermissionResult:
        """Ask the user whether to allow a tool call.

        ``remember_choice=True`` on the result means "always allow this tool".
        """
        ...


def describe_tool_call(tool_name: str, args: dict[str, Any]) -> str:
    """Build a human-readable one-line description of a tool call."""
    path = args.get("file_path") or args.get("path")
    if tool_name == "shell" and "command" in args:
        return f"Run command: {args['command']}"
    if tool_name == "file_write" and path:
        content = args.get("content", "")
        lines = content.count("\n") + 1 if content else 0
        return f"Write {path} ({lines} lines)"
    if tool_name == "file_delete" and path:
        return f"Delete {path}"
    if tool_name == "execute_code":
        language = args.get("language", "code")
        return f"Execute {language} snippet"
    if tool_name in ("file_read", "read_file") and path:
        return f"Read {path}"
    if "pattern" in args:
        return f"Search: {args['pattern']}"
    # Fallback: tool name + truncated args
    args_str = json.dumps(args, default=str)
    if len(args_str) > 80:
        args_str = args_str[:77] + "..."
    return f"{tool_name}({args_str})"


class StdinApprovalCallback:
    """Plain-text approval prompt using stdin/stdout."""

    async def request_approval(
        self, tool_name: str, args: dict[str, Any], description: str,
    ) -> PermissionResult:
        """Prompt with ``[y/n/a]``; ``a`` approves and remembers the choice."""
        prompt = f"\nAllow {tool_name}? {description}\n[y/n/a] > "
        try:
            answer = await anyio.to_thread.run_sync(input, prompt)
        except (EOFError, KeyboardInterrupt):
            return PermissionResult(approved=False, reason="No answer from user")
        choice = answer.strip().lower()
        if choice in ("a", "always"):
            return PermissionResult(
                approved=True, reason="Always allowed by user", remember_choice=True,
            )
        if choice in ("y", "yes"):
            return PermissionResult(approved=True, reason="Approved by user")
        return PermissionResult(approved=False, reason="User rejected")


class InteractivePermissionHandler:
    """Delegates every non-pre-approved call to an :class:`ApprovalCallback`.

    Without a callback nothing can be asked, so requests are denied.
    """

    def __init__(
        self,
        callback: ApprovalCallback | None = None,
        *,
        pre_approved: set[str] | None = None,
    ) -> None:
        self._callback = callback
        self._pre_approved: set[str] = set(pre_approved or ())

    def set_callback(self, callback: ApprovalCallback | None) -> None:
        self._callback = callback

    @property
    def pre_approved_tools(self) -> list[str]:
        return sorted(self._pre_approved)

    def has_pre_approval(self, tool_name: str) -> bool:
        return tool_name in self._pre_approved

    async def request_permission(self, request: PermissionRequest) -> PermissionResult:
        call = request.tool_call
        if self.has_pre_approval(call.name):
            return PermissionResult(approved=True, reason="Pre-approved by user preference")
        if self._callback is None:
            logger.warning("No approval callback registered; denying %s", call.name)
            return PermissionResult(approved=False, reason="No approval callback available")

        description = request.tool_description or describe_tool_call(call.name, call.arguments)
        result = await self._callback.request_approval(call.name, call.arguments, description)
        logger.debug(
            "User %s %s", "approved" if result.approved else "rejected", call.name,
        )
        return result

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if always_allow:
            self._pre_approved.add(tool_name)
            logger.info("%s added to pre-approved tools", tool_name)
        else:
            self._pre_approved.discard(tool_name)
            logger.info("%s removed from pre-approved tools", tool_name)

    async def clear_preferences(self) -> None:
        self._pre_approved.clear()
