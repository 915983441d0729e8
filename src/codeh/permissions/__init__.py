"""Permission handlers for tool calls."""

from codeh.permissions.approval import (
    ApprovalCallback,
    InteractivePermissionHandler,
    StdinApprovalCallback,
    describe_tool_call,
)
from codeh.permissions.handler import ConfigurablePermissionHandler
from codeh.permissions.hybrid import HybridPermissionHandler
from codeh.permissions.mode import ApprovalMode, PermissionModeManager
from codeh.permissions.rules import DANGEROUS_TOOLS, DenyRule, PermissionRules

__all__ = [
    "DANGEROUS_TOOLS",
    "ApprovalCallback",
    "ApprovalMode",
    "ConfigurablePermissionHandler",
    "DenyRule",
    "HybridPermissionHandler",
    "InteractivePermissionHandler",
    "PermissionModeManager",
    "PermissionRules",
    "StdinApprovalCallback",
    "describe_tool_call",
]
