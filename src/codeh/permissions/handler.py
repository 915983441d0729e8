"""Mode and rule based permission handler.

Evaluation order for one request:

1. Deny rules (highest priority)
2. Pre-approved tool patterns
3. Dangerous tools, when they require explicit approval
4. Mode-based default
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable

from codeh.permissions.rules import DANGEROUS_TOOLS, PermissionRules
from codeh.types.permissions import PermissionMode, PermissionRequest, PermissionResult

logger = logging.getLogger(__name__)


class ConfigurablePermissionHandler:
    """Answers permission requests from configuration alone, never prompting.

    Usage::

        handler = ConfigurablePermissionHandler(
            PermissionMode.REQUIRE_APPROVAL, pre_approved=["read_*", "grep"],
        )
        handler.rules.add_deny("shell", {"command": "rm -rf *"})
    """

    def __init__(
        self,
        mode: PermissionMode = PermissionMode.AUTO_APPROVE,
        *,
        pre_approved: Iterable[str] = (),
        rules: PermissionRules | None = None,
        dangerous_tools_require_approval: bool = True,
        dangerous_tools: frozenset[str] = DANGEROUS_TOOLS,
    ) -> None:
        self._mode = mode
        self.rules = rules or PermissionRules()
        for pattern in pre_approved:
            self.rules.approve(pattern)
        self.dangerous_tools_require_approval = dangerous_tools_require_approval
        self._dangerous_tools = dangerous_tools

    @property
    def mode(self) -> PermissionMode:
        return self._mode

    def set_mode(self, mode: PermissionMode) -> None:
        logger.info("Permission mode changed: %s -> %s", self._mode.value, mode.value)
        self._mode = mode

    def is_dangerous(self, tool_name: str) -> bool:
        return tool_name in self._dangerous_tools

    # ------------------------------------------------------------------
    # PermissionHandler protocol
    # ------------------------------------------------------------------

    def has_pre_approval(self, tool_name: str) -> bool:
        """True when *tool_name* can run without asking.

        A deny rule naming the tool always forces a full check, since only
        :meth:`request_permission` sees the arguments its patterns match on.
        """
        if any(fnmatch.fnmatchcase(tool_name, rule.tool) for rule in self.rules.deny_rules):
            return False
        return self.rules.is_pre_approved(tool_name)

    def request_permission(self, request: PermissionRequest) -> PermissionResult:
        tool_name = request.tool_call.name
        result = self._evaluate(tool_name, request)
        logger.debug(
            "Permission for %s: %s (%s)",
            tool_name,
            "approved" if result.approved else "denied",
            result.reason,
        )
        return result

    async def save_permission_preference(self, tool_name: str, always_allow: bool) -> None:
        if always_allow:
            self.rules.approve(tool_name)
        else:
            self.rules.revoke(tool_name)

    async def clear_preferences(self) -> None:
        self.rules.pre_approved.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _evaluate(self, tool_name: str, request: PermissionRequest) -> PermissionResult:
        deny = self.rules.find_deny(tool_name, request.tool_call.arguments)
        if deny is not None:
            return PermissionResult(
                approved=False,
                reason=deny.reason or f"Denied by rule for {deny.tool!r}",
            )

        if self.rules.is_pre_approved(tool_name):
            return PermissionResult(approved=True, reason="Pre-approved tool")

        if self.is_dangerous(tool_name) and self.dangerous_tools_require_approval:
            return PermissionResult(
                approved=False,
                reason=(
                    "Dangerous tool requires explicit approval. "
                    "Add it to the pre-approved tools to enable."
                ),
            )

        match self._mode:
            case PermissionMode.AUTO_APPROVE:
                return PermissionResult(approved=True, reason="Auto-approved")
            case PermissionMode.REQUIRE_APPROVAL:
                return PermissionResult(
                    approved=False,
                    reason=(
                        "Tool requires pre-approval. "
                        "Add it to the pre-approved tools to enable."
                    ),
                )
            case PermissionMode.DENY_BY_DEFAULT:
                return PermissionResult(
                    approved=False,
                    reason="Permission denied by default. Change mode or pre-approve the tool.",
                )
            case _:
                return PermissionResult(approved=False, reason="Unknown permission mode")

    def __repr__(self) -> str:
        return (
            f"ConfigurablePermissionHandler(mode={self._mode.value}, "
            f"pre_approved={self.rules.pre_approved})"
        )
