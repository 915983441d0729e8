"""Metrics recording: counters and histograms, with no-op fallback."""

from __future__ import annotations

from typing import Any

try:
    from opentelemetry import metrics

    _HAS_OTEL = True
except ImportError:
    _HAS_OTEL = False

# Lazily-created instruments
_meter: Any = None
_token_counter: Any = None
_tool_call_counter: Any = None
_tool_duration_histogram: Any = None
_backend_latency_histogram: Any = None
_compression_ratio_histogram: Any = None


def _ensure_instruments() -> None:
    """Create meter and instruments on first use."""
    global _meter, _token_counter, _tool_call_counter
    global _tool_duration_histogram, _backend_latency_histogram, _compression_ratio_histogram

    if not _HAS_OTEL or _meter is not None:
        return

    _meter = metrics.get_meter("codeh")
    _token_counter = _meter.create_counter(
        "codeh.tokens",
        description="Total tokens consumed",
        unit="tokens",
    )
    _tool_call_counter = _meter.create_counter(
        "codeh.tool_calls",
        description="Tool calls by final status",
    )
    _tool_duration_histogram = _meter.create_histogram(
        "codeh.tool_duration",
        description="Tool execution time including retries",
        unit="ms",
    )
    _backend_latency_histogram = _meter.create_histogram(
        "codeh.backend_latency",
        description="Model backend response latency",
        unit="ms",
    )
    _compression_ratio_histogram = _meter.create_histogram(
        "codeh.compression_ratio",
        description="Summary tokens over original tokens per compression",
    )


def record_tokens(input_tokens: int = 0, output_tokens: int = 0, *, model: str = "") -> None:
    """Record token usage for one backend call."""
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _token_counter.add(input_tokens, {"direction": "input", "model": model})
    _token_counter.add(output_tokens, {"direction": "output", "model": model})


def record_tool_call(
    tool_name: str,
    *,
    status: str,
    attempts: int = 0,
    duration_ms: float | None = None,
) -> None:
    """Record one finished tool call and, when it ran, how long it took."""
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _tool_call_counter.add(1, {"tool": tool_name, "status": status, "attempts": attempts})
    if duration_ms is not None:
        _tool_duration_histogram.record(duration_ms, {"tool": tool_name})


def record_backend_latency(latency_ms: float, *, model: str = "", is_error: bool = False) -> None:
    """Record backend response latency in milliseconds."""
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _backend_latency_histogram.record(latency_ms, {"model": model, "error": str(is_error).lower()})


def record_compression(original_tokens: int, compressed_tokens: int) -> None:
    """Record the ratio achieved by one context compression."""
    if not _HAS_OTEL or original_tokens <= 0:
        return
    _ensure_instruments()
    _compression_ratio_histogram.record(compressed_tokens / original_tokens)


def reset_instruments() -> None:
    """Reset module-level instruments (test isolation)."""
    global _meter, _token_counter, _tool_call_counter
    global _tool_duration_histogram, _backend_latency_histogram, _compression_ratio_histogram
    _meter = None
    _token_counter = None
    _tool_call_counter = None
    _tool_duration_histogram = None
    _backend_latency_histogram = None
    _compression_ratio_histogram = None
