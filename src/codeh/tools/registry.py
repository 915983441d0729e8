"""ToolRegistry: lazy registry and dispatcher for capabilities."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from codeh.errors import OperationCancelledError
from codeh.types.tools import Tool, ToolDef, ToolExecutionResult

logger = logging.getLogger(__name__)

ToolFactory = Callable[[], Tool]


@dataclass(slots=True)
class _Registration:
    factory: ToolFactory
    definition: ToolDef | None = None
    instance: Tool | None = None
    failed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class ToolRegistry:
    """Maps capability names to factories and constructs each one on first use.

    Definitions supplied at registration let :meth:`definitions` and
    :meth:`describe` answer without building the capability, so the backend
    can be told about every tool while only the ones actually called are
    ever constructed.

    Usage::

        registry = ToolRegistry()
        registry.register_lazy("read_file", ReadFileTool, ReadFileTool.DEFINITION)
        result = await registry.execute("read_file", {"path": "setup.cfg"})
    """

    def __init__(self) -> None:
        self._registry: dict[str, _Registration] = {}
        self._definitions_cache: list[ToolDef] | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_lazy(
        self,
        name: str,
        factory: ToolFactory,
        definition: ToolDef | None = None,
    ) -> None:
        """Register *factory* under *name*; it runs on the first :meth:`get`."""
        if definition is not None and definition.name != name:
            raise ValueError(
                f"Definition name {definition.name!r} does not match registered name {name!r}",
            )
        if name in self._registry:
            logger.debug("Replacing registered tool %s", name)
        self._registry[name] = _Registration(factory=factory, definition=definition)
        self._invalidate()

    def register(self, tool: Tool) -> None:
        """Add an already constructed tool under its definition name."""
        definition = tool.definition
        self._registry[definition.name] = _Registration(
            factory=lambda: tool,
            definition=definition,
            instance=tool,
        )
        self._invalidate()

    def unregister(self, name: str) -> bool:
        removed = self._registry.pop(name, None) is not None
        if removed:
            self._invalidate()
        return removed

    def clear(self) -> None:
        self._registry.clear()
        self._invalidate()

    def _invalidate(self) -> None:
        self._definitions_cache = None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Tool | None:
        """Return the tool with the given name, constructing it if needed.

        Returns None for unknown names and for factories that raised.
        """
        entry = self._registry.get(name)
        if entry is None:
            return None
        if entry.instance is not None:
            return entry.instance
        with entry.lock:
            if entry.instance is None and not entry.failed:
                try:
                    entry.instance = entry.factory()
                except Exception:
                    entry.failed = True
                    logger.exception("Factory for tool %s failed", name)
                else:
                    logger.debug("Constructed tool %s", name)
        return entry.instance

    def has(self, name: str) -> bool:
        return name in self._registry

    def names(self) -> list[str]:
        return list(self._registry)

    def loaded_names(self) -> list[str]:
        """Names of the tools that have been constructed so far."""
        return [name for name, entry in self._registry.items() if entry.instance is not None]

    def definition(self, name: str) -> ToolDef | None:
        """Return the definition for *name*.

        Uses the definition supplied at registration when there is one and
        only falls back to constructing the tool otherwise.
        """
        entry = self._registry.get(name)
        if entry is None:
            return None
        if entry.definition is not None:
            return entry.definition
        tool = self.get(name)
        if tool is None:
            return None
        entry.definition = tool.definition
        return entry.definition

    def definitions(self) -> list[ToolDef]:
        """Return all tool definitions (for the backend's ``tools`` field).

        The list is cached until the registry changes.
        """
        if self._definitions_cache is None:
            defs: list[ToolDef] = []
            for name in self._registry:
                definition = self.definition(name)
                if definition is not None:
                    defs.append(definition)
            self._definitions_cache = defs
        return list(self._definitions_cache)

    def describe(self, name: str) -> str | None:
        definition = self.definition(name)
        return definition.description if definition is not None else None

    def is_concurrency_safe(self, name: str) -> bool:
        definition = self.definition(name)
        return definition is not None and definition.concurrency_safe

    def preload(self, names: Iterable[str] | None = None) -> list[str]:
        """Construct the named tools (or all of them) ahead of first use.

        Returns the names that are loaded afterwards.
        """
        targets = list(names) if names is not None else self.names()
        return [name for name in targets if self.get(name) is not None]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(self, name: str, args: dict[str, Any]) -> ToolExecutionResult:
        """Dispatch a tool call by name.

        Never raises for tool problems: unknown tools, rejected parameters and
        exceptions from the tool all come back as a failed
        :class:`ToolExecutionResult` with ``error_type`` set.
        """
        tool = self.get(name)
        if tool is None:
            return ToolExecutionResult.fail(
                f"Tool '{name}' not found",
                error_type="not_found",
                metadata={"available_tools": sorted(self._registry)},
            )

        try:
            valid = tool.validate_parameters(args)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Parameter validation for %s raised: %s", name, exc)
            valid = False
        if not valid:
            return ToolExecutionResult.fail(
                f"Invalid parameters for tool '{name}'",
                error_type="invalid_parameters",
            )

        try:
            return await tool.execute(args)
        except OperationCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.debug("Tool %s raised %s", name, type(exc).__name__)
            return ToolExecutionResult.fail(
                f"Tool execution failed: {exc}",
                error_type="execution_error",
                metadata={"exception_type": type(exc).__name__},
            )

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._registry)

    def __contains__(self, name: object) -> bool:
        return name in self._registry

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={sorted(self._registry)}, loaded={sorted(self.loaded_names())})"
