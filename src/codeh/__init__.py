"""codeh: orchestration core for an AI coding assistant.

Usage:
    import codeh

    registry = codeh.ToolRegistry()
    registry.register_lazy("read_file", ReadFileTool, READ_FILE_DEF)
    orchestrator = codeh.Orchestrator(
        registry,
        codeh.ConfigurablePermissionHandler(),
        client,
        codeh.InMemoryHistory(),
        codeh.load_orchestrator_config(),
    )
    result = await orchestrator.process_input("Why does test_parser fail?")
    print(result.final_turn.response.content)
"""

from codeh.core.cancellation import CancellationToken
from codeh.core.config import load_orchestrator_config
from codeh.core.context import ContextWindowManager
from codeh.core.events import ProgressChannel
from codeh.core.orchestrator import OrchestrationResult, Orchestrator
from codeh.core.pipeline import PipelineResult, ToolCallPipeline
from codeh.core.retry import RetryExecutor, RetryResult
from codeh.core.session import Session
from codeh.errors import (
    CodehError,
    CompressionError,
    ConfigurationError,
    ExecutionTimeoutError,
    InvalidTransitionError,
    OperationCancelledError,
    ToolExecutionError,
    ValidationError,
)
from codeh.history import InMemoryHistory, JsonlHistory
from codeh.permissions import (
    ConfigurablePermissionHandler,
    HybridPermissionHandler,
    InteractivePermissionHandler,
    PermissionModeManager,
)
from codeh.tools import BaseTool, ToolRegistry
from codeh.types.config import OrchestratorConfig, RetryPolicy
from codeh.types.execution import ExecutionContext, ExecutionStatus
from codeh.types.messages import Message, ToolCall
from codeh.types.permissions import PermissionMode, PermissionResult
from codeh.types.tools import ToolDef, ToolExecutionResult, ToolParam
from codeh.types.turn import Turn

__version__ = "0.1.0"

__all__ = [
    # Core API
    "CancellationToken",
    "ContextWindowManager",
    "OrchestrationResult",
    "Orchestrator",
    "PipelineResult",
    "ProgressChannel",
    "RetryExecutor",
    "RetryResult",
    "ToolCallPipeline",
    "load_orchestrator_config",
    # Collaborators
    "BaseTool",
    "ConfigurablePermissionHandler",
    "HybridPermissionHandler",
    "InMemoryHistory",
    "InteractivePermissionHandler",
    "JsonlHistory",
    "PermissionModeManager",
    "ToolRegistry",
    # Types
    "ExecutionContext",
    "ExecutionStatus",
    "Message",
    "OrchestratorConfig",
    "PermissionMode",
    "PermissionResult",
    "RetryPolicy",
    "Session",
    "ToolCall",
    "ToolDef",
    "ToolExecutionResult",
    "ToolParam",
    "Turn",
    # Errors
    "CodehError",
    "CompressionError",
    "ConfigurationError",
    "ExecutionTimeoutError",
    "InvalidTransitionError",
    "OperationCancelledError",
    "ToolExecutionError",
    "ValidationError",
]
