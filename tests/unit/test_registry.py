"""Tests for the lazy tool registry and BaseTool validation."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from codeh.tools.base import BaseTool
from codeh.tools.registry import ToolRegistry
from codeh.types.tools import ToolDef, ToolExecutionResult, ToolParam
from tests.conftest import EchoTool, FlakyTool


class CountingFactory:
    def __init__(self, make=EchoTool) -> None:
        self.make = make
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.count += 1
        return self.make()


class TypedTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return ToolDef(
            name="typed",
            description="Has typed parameters.",
            parameters=(
                ToolParam(name="count", type="integer", description="How many"),
                ToolParam(name="mode", type="string", description="Mode", enum=("fast", "slow")),
                ToolParam(name="tags", type="array", description="Tags", required=False),
            ),
        )

    async def execute(self, args: dict[str, Any]) -> ToolExecutionResult:
        return self._ok(str(args["count"]))


# --- Lazy construction ---


class TestLazyConstruction:
    def test_definitions_do_not_instantiate(self):
        factory = CountingFactory()
        reg = ToolRegistry()
        reg.register_lazy("echo", factory, EchoTool.DEFINITION)

        assert [d.name for d in reg.definitions()] == ["echo"]
        assert reg.describe("echo") == "Echo the given text back."
        assert reg.is_concurrency_safe("echo")
        assert factory.count == 0
        assert reg.loaded_names() == []

    def test_first_get_constructs_then_reuses(self):
        factory = CountingFactory()
        reg = ToolRegistry()
        reg.register_lazy("echo", factory, EchoTool.DEFINITION)

        first = reg.get("echo")
        second = reg.get("echo")
        assert first is second
        assert factory.count == 1
        assert reg.loaded_names() == ["echo"]

    def test_missing_definition_falls_back_to_instance(self):
        factory = CountingFactory()
        reg = ToolRegistry()
        reg.register_lazy("echo", factory)
        assert reg.definitions()[0] == EchoTool.DEFINITION
        assert factory.count == 1

    def test_concurrent_first_use_constructs_once(self):
        def slow_echo():
            time.sleep(0.02)
            return EchoTool()

        factory = CountingFactory(slow_echo)
        reg = ToolRegistry()
        reg.register_lazy("echo", factory, EchoTool.DEFINITION)

        with ThreadPoolExecutor(max_workers=8) as pool:
            tools = list(pool.map(lambda _: reg.get("echo"), range(8)))

        assert factory.count == 1
        assert all(t is tools[0] for t in tools)

    def test_factory_failure_surfaces_as_not_found(self, caplog):
        def broken():
            raise RuntimeError("cannot build")

        reg = ToolRegistry()
        reg.register_lazy("broken", broken)
        with caplog.at_level(logging.ERROR, logger="codeh.tools.registry"):
            assert reg.get("broken") is None
        assert "Factory for tool broken failed" in caplog.text
        assert reg.definitions() == []

    def test_definition_name_must_match(self):
        reg = ToolRegistry()
        with pytest.raises(ValueError, match="does not match"):
            reg.register_lazy("other", EchoTool, EchoTool.DEFINITION)

    def test_preload(self):
        factory = CountingFactory()
        reg = ToolRegistry()
        reg.register_lazy("echo", factory, EchoTool.DEFINITION)
        assert reg.preload() == ["echo"]
        assert factory.count == 1


# --- Definitions cache ---


class TestDefinitionsCache:
    def test_cache_invalidated_on_change(self, registry):
        assert len(registry.definitions()) == 1
        registry.register(FlakyTool(0))
        assert {d.name for d in registry.definitions()} == {"echo", "flaky"}
        registry.unregister("flaky")
        assert [d.name for d in registry.definitions()] == ["echo"]
        registry.clear()
        assert registry.definitions() == []

    def test_returned_list_is_a_copy(self, registry):
        registry.definitions().clear()
        assert len(registry.definitions()) == 1


# --- Dispatch ---


class TestExecute:
    @pytest.mark.asyncio
    async def test_success(self, registry, echo_tool):
        result = await registry.execute("echo", {"text": "hi"})
        assert result.success
        assert result.output == "hi"
        assert echo_tool.calls == [{"text": "hi"}]

    @pytest.mark.asyncio
    async def test_not_found(self, registry):
        result = await registry.execute("nope", {})
        assert not result.success
        assert result.error == "Tool 'nope' not found"
        assert result.error_type == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_parameters(self, registry, echo_tool):
        result = await registry.execute("echo", {})
        assert result.error == "Invalid parameters for tool 'echo'"
        assert result.error_type == "invalid_parameters"
        assert echo_tool.calls == []

    @pytest.mark.asyncio
    async def test_exception_becomes_result(self):
        reg = ToolRegistry()
        reg.register(FlakyTool(1))
        result = await reg.execute("flaky", {})
        assert not result.success
        assert result.error == "Tool execution failed: boom #1"
        assert result.error_type == "execution_error"
        assert result.metadata == {"exception_type": "RuntimeError"}

    @pytest.mark.asyncio
    async def test_execute_constructs_lazily(self):
        factory = CountingFactory()
        reg = ToolRegistry()
        reg.register_lazy("echo", factory, EchoTool.DEFINITION)
        await reg.execute("echo", {"text": "a"})
        await reg.execute("echo", {"text": "b"})
        assert factory.count == 1


class TestDunders:
    def test_len_contains_repr(self, registry):
        assert len(registry) == 1
        assert "echo" in registry
        assert "nope" not in registry
        assert registry.has("echo")
        assert "echo" in repr(registry)


# --- BaseTool validation ---


class TestValidateParameters:
    @pytest.fixture
    def tool(self) -> TypedTool:
        return TypedTool()

    def test_valid(self, tool):
        assert tool.validate_parameters({"count": 3, "mode": "fast"})
        assert tool.validate_parameters({"count": 3, "mode": "slow", "tags": ["a"]})

    def test_missing_required(self, tool):
        assert not tool.validate_parameters({"mode": "fast"})

    def test_wrong_type(self, tool):
        assert not tool.validate_parameters({"count": "3", "mode": "fast"})
        assert not tool.validate_parameters({"count": True, "mode": "fast"})
        assert not tool.validate_parameters({"count": 1, "mode": "fast", "tags": "a"})

    def test_enum(self, tool):
        assert not tool.validate_parameters({"count": 1, "mode": "medium"})

    def test_name_and_description(self, tool):
        assert tool.name == "typed"
        assert tool.description == "Has typed parameters."
