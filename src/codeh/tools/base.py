"""Base tool class with shared logic."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from codeh.types.tools import ToolDef, ToolExecutionResult

# JSON schema type name -> accepted Python types
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def _matches_type(value: Any, type_name: str) -> bool:
    expected = _JSON_TYPES.get(type_name)
    if expected is None:
        return True
    # bool is an int subclass; only accept it where booleans are expected
    if isinstance(value, bool) and type_name != "boolean":
        return False
    return isinstance(value, expected)


class BaseTool(ABC):
    """Base class for capabilities.

    Subclasses provide :attr:`definition` and :meth:`execute`; the default
    :meth:`validate_parameters` checks required parameters, JSON types and
    enum membership against the definition.
    """

    @property
    @abstractmethod
    def definition(self) -> ToolDef:
        ...

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        ...

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    def validate_parameters(self, args: dict[str, Any]) -> bool:
        if not isinstance(args, dict):
            return False
        for param in self.definition.parameters:
            if param.name not in args:
                if param.required:
                    return False
                continue
            value = args[param.name]
            if value is None and not param.required:
                continue
            if not _matches_type(value, param.type):
                return False
            if param.enum is not None and value not in param.enum:
                return False
        return True

    def _error(self, msg: str, metadata: dict[str, Any] | None = None) -> ToolExecutionResult:
        return ToolExecutionResult.fail(msg, metadata=metadata)

    def _ok(self, output: str, metadata: dict[str, Any] | None = None) -> ToolExecutionResult:
        return ToolExecutionResult.ok(output, metadata)
