"""Runtime switch between auto-approval and interactive approval."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class ApprovalMode(Enum):
    MVP = "mvp"  # Auto-approve every tool
    INTERACTIVE = "interactive"  # Ask the user

    @property
    def description(self) -> str:
        if self is ApprovalMode.MVP:
            return "MVP (Auto-approve all tools)"
        return "Interactive (User approval required)"


ModeListener = Callable[[ApprovalMode], None]


class PermissionModeManager:
    """Holds the current :class:`ApprovalMode` and notifies listeners on change.

    Starts in MVP mode. Setting the mode it already has is a no-op and
    notifies nobody.
    """

    def __init__(self, mode: ApprovalMode = ApprovalMode.MVP) -> None:
        self._mode = mode
        self._listeners: list[ModeListener] = []

    @property
    def mode(self) -> ApprovalMode:
        return self._mode

    def is_mvp(self) -> bool:
        return self._mode is ApprovalMode.MVP

    def is_interactive(self) -> bool:
        return self._mode is ApprovalMode.INTERACTIVE

    def set_mode(self, mode: ApprovalMode) -> None:
        if mode is self._mode:
            return
        logger.info("Approval mode changed: %s -> %s", self._mode.value, mode.value)
        self._mode = mode
        self._notify()

    def toggle_mode(self) -> ApprovalMode:
        """Flip between MVP and interactive and return the new mode."""
        self.set_mode(ApprovalMode.INTERACTIVE if self.is_mvp() else ApprovalMode.MVP)
        return self._mode

    def add_listener(self, listener: ModeListener) -> Callable[[], None]:
        """Call *listener* with the new mode on every change. Returns a remover."""
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: ModeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._mode)
            except Exception:
                logger.warning("Mode change listener failed", exc_info=True)
