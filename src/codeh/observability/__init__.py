"""OpenTelemetry metrics for codeh; no-ops when opentelemetry is absent."""

from codeh.observability.metrics import (
    record_backend_latency,
    record_compression,
    record_tokens,
    record_tool_call,
    reset_instruments,
)

__all__ = [
    "record_backend_latency",
    "record_compression",
    "record_tokens",
    "record_tool_call",
    "reset_instruments",
]
