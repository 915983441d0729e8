"""Permission rules and tool classification."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

# Tools that can change the machine; they need explicit pre-approval unless
# the handler is told otherwise.
DANGEROUS_TOOLS = frozenset({"shell", "file_write", "file_delete", "execute_code"})


@dataclass(frozen=True, slots=True)
class DenyRule:
    """Refuse matching tool calls regardless of mode or pre-approval."""

    tool: str  # Tool name or glob pattern (e.g. "shell", "file_*", "*")
    args_pattern: dict[str, str] | None = None  # Optional arg matchers
    reason: str | None = None


def matches_pattern(tool_name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(tool_name, pattern) for pattern in patterns)


def matches_rule(rule: DenyRule, tool_name: str, args: dict[str, Any]) -> bool:
    """Check if a rule matches a tool call."""
    if not fnmatch.fnmatchcase(tool_name, rule.tool):
        return False
    if rule.args_pattern:
        for key, pattern in rule.args_pattern.items():
            val = str(args.get(key, ""))
            if not fnmatch.fnmatch(val, pattern):
                return False
    return True


@dataclass(slots=True)
class PermissionRules:
    """Pre-approved tool patterns plus deny rules."""

    pre_approved: list[str] = field(default_factory=list)
    deny_rules: list[DenyRule] = field(default_factory=list)

    def add_deny(
        self,
        tool: str,
        args_pattern: dict[str, str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.deny_rules.append(DenyRule(tool=tool, args_pattern=args_pattern, reason=reason))

    def approve(self, pattern: str) -> None:
        if pattern not in self.pre_approved:
            self.pre_approved.append(pattern)

    def revoke(self, pattern: str) -> None:
        if pattern in self.pre_approved:
            self.pre_approved.remove(pattern)

    def is_pre_approved(self, tool_name: str) -> bool:
        return matches_pattern(tool_name, self.pre_approved)

    def find_deny(self, tool_name: str, args: dict[str, Any] | None = None) -> DenyRule | None:
        check_args = args or {}
        for rule in self.deny_rules:
            if matches_rule(rule, tool_name, check_args):
                return rule
        return None
