"""Capability registry and base classes."""

from codeh.tools.base import BaseTool
from codeh.tools.registry import ToolFactory, ToolRegistry
from codeh.tools.schema import param_to_schema, to_api_format, to_api_format_batch

__all__ = [
    "BaseTool",
    "ToolFactory",
    "ToolRegistry",
    "param_to_schema",
    "to_api_format",
    "to_api_format_batch",
]
