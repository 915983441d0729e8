"""Permission handler that follows the mode manager's current mode."""

from __future__ import annotations

import logging

from codeh.permissions.approval import ApprovalCallback, InteractivePermissionHandler
from codeh.permissions.handler import ConfigurablePermissionHandler
from codeh.permissions.mode import PermissionModeManager
from codeh.types.permissions import PermissionMode, PermissionRequest, PermissionResult

logger = logging.getLogger(__name__)


class HybridPermissionHandler:
    """Auto-approves in MVP mode and asks through a callback in interactive mode.

    The mode is read on every call, so switching it through the manager takes
    effect for the next tool call. "Always allow" preferences only exist in
    interactive mode.

    Usage::

        modes = PermissionModeManager()
        handler = HybridPermissionHandler(modes, StdinApprovalCallback())
        modes.toggle_mode()  # now every tool call is confirmed
    """

    def __init__(
        self,
        mode_manager: PermissionModeManager | None = None,
        callback: ApprovalCallback | None = None,
    ) -> None:
        self.mode_manager = mode_manager or PermissionModeManager()
        self._auto = ConfigurablePermissionHandler(
            PermissionMode.AUTO_APPROVE, dangerous_tools_require_approval=False,
        )
        self._interactive = InteractivePermissionHandler(callback)

    @property
    def interactive_handler(self) -> InteractivePermissionHandler:
        """The delegate used in interactive mode, e.g. for wiring a UI callback."""
        return self._interactive

    def has_pre_approval(self, tool_name: str) -> bool:
        if self.mode_manager.is_interactive():
            return self._interactive.has_pre_approval(tool_name)
        return True

    async def request_permission(self, request: PermissionRequest) -> PermissionResult:
        if self.mode_manager.is_interactive():
            return await self._interactive.request_permission(request)
        return self._auto.request_permission(request)

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if not self.mode_manager.is_interactive():
            logger.warning(
                "Permission preferences are only kept in interactive mode; ignoring %s",
                tool_name,
            )
            return
        await self._interactive.save_permission_preference(tool_name, always_allow)

    async def clear_preferences(self) -> None:
        await self._interactive.clear_preferences()
