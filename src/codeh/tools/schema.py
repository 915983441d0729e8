"""Conversion of capability definitions into backend-neutral JSON schema."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from codeh.types.tools import ToolDef, ToolParam


def param_to_schema(param: ToolParam) -> dict[str, Any]:
    """Render a single :class:`ToolParam` as a JSON Schema property dict."""
    prop: dict[str, Any] = {
        "type": param.type,
        "description": param.description,
    }
    if param.enum is not None:
        prop["enum"] = list(param.enum)
    if param.default is not None:
        prop["default"] = param.default
    # Some backends reject array properties without an items schema.
    if param.type == "array":
        prop["items"] = param.items if param.items is not None else {"type": "string"}
    return prop


def to_api_format(tool: ToolDef) -> dict[str, Any]:
    """Convert one :class:`ToolDef` into ``{name, description, input_schema}``.

    Backend adapters translate this intermediate form into their own wire
    format.

    Examples
    --------
    >>> spec = to_api_format(ToolDef(
    ...     name="read_file",
    ...     description="Read a file from disk.",
    ...     parameters=(ToolParam(name="path", type="string",
    ...                          description="Absolute path"),),
    ... ))
    >>> spec["input_schema"]["required"]
    ['path']
    """
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in tool.parameters:
        properties[param.name] = param_to_schema(param)
        if param.required:
            required.append(param.name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required

    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": schema,
    }


def to_api_format_batch(tools: Iterable[ToolDef]) -> list[dict[str, Any]]:
    return [to_api_format(tool) for tool in tools]
