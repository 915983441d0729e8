"""Type definitions for codeh."""

from codeh.types.config import (
    RETRY_AGGRESSIVE,
    RETRY_FAST,
    RETRY_STANDARD,
    OrchestratorConfig,
    RetryPolicy,
)
from codeh.types.events import ProgressCallback, ProgressEvent, ProgressEventType
from codeh.types.execution import TERMINAL_STATUSES, ExecutionContext, ExecutionStatus
from codeh.types.history import HistoryRepository
from codeh.types.messages import Message, MessageRole, ToolCall
from codeh.types.permissions import (
    PermissionHandler,
    PermissionMode,
    PermissionRequest,
    PermissionResult,
)
from codeh.types.providers import (
    ApiRequest,
    ApiResponse,
    ChunkCallback,
    ModelClient,
    StreamChunk,
    TokenUsage,
)
from codeh.types.tools import ErrorType, Tool, ToolDef, ToolExecutionResult, ToolParam
from codeh.types.turn import Turn, TurnMetadata

__all__ = [
    "RETRY_AGGRESSIVE",
    "RETRY_FAST",
    "RETRY_STANDARD",
    "TERMINAL_STATUSES",
    "ApiRequest",
    "ApiResponse",
    "ChunkCallback",
    "ErrorType",
    "ExecutionContext",
    "ExecutionStatus",
    "HistoryRepository",
    "Message",
    "MessageRole",
    "ModelClient",
    "OrchestratorConfig",
    "PermissionHandler",
    "PermissionMode",
    "PermissionRequest",
    "PermissionResult",
    "ProgressCallback",
    "ProgressEvent",
    "ProgressEventType",
    "RetryPolicy",
    "StreamChunk",
    "TokenUsage",
    "Tool",
    "ToolCall",
    "ToolDef",
    "ToolExecutionResult",
    "ToolParam",
    "Turn",
    "TurnMetadata",
]
