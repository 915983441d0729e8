"""Configuration types for the orchestration core."""

from __future__ import annotations

from dataclasses import dataclass

from codeh.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry with exponential backoff."""

    max_retries: int = 2
    initial_backoff_ms: float = 1000
    max_backoff_ms: float = 10_000
    jitter: float = 0.2  # +/- fraction applied to each doubled backoff

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", max_retries=self.max_retries)
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ConfigurationError("backoff values must be >= 0")
        if not 0 <= self.jitter < 1:
            raise ConfigurationError("jitter must be in [0, 1)", jitter=self.jitter)


# Presets mirroring common operation profiles
RETRY_FAST = RetryPolicy(max_retries=2, initial_backoff_ms=100, max_backoff_ms=1000)
RETRY_STANDARD = RetryPolicy(max_retries=3, initial_backoff_ms=1000, max_backoff_ms=10_000)
RETRY_AGGRESSIVE = RetryPolicy(max_retries=5, initial_backoff_ms=2000, max_backoff_ms=30_000)


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Configuration for one :class:`~codeh.core.orchestrator.Orchestrator`."""

    max_iterations: int = 5
    tool_timeout: float | None = 30.0  # seconds per attempt, None = unbounded
    max_retries: int = 2
    initial_backoff_ms: float = 1000
    max_backoff_ms: float = 10_000
    parallel: bool = False
    context_window_tokens: int = 100_000
    compression_threshold: float = 0.8
    keep_recent_count: int = 3
    model: str | None = None
    max_tokens: int | None = None  # per model response
    temperature: float | None = None
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ConfigurationError(
                "max_iterations must be >= 1", max_iterations=self.max_iterations,
            )
        if self.tool_timeout is not None and self.tool_timeout <= 0:
            raise ConfigurationError(
                "tool_timeout must be positive", tool_timeout=self.tool_timeout,
            )
        if not 0 < self.compression_threshold <= 1:
            raise ConfigurationError(
                "compression_threshold must be in (0, 1]",
                compression_threshold=self.compression_threshold,
            )
        if self.context_window_tokens < 1:
            raise ConfigurationError("context_window_tokens must be >= 1")
        if self.keep_recent_count < 0:
            raise ConfigurationError("keep_recent_count must be >= 0")
        # Validates retry fields
        self.retry_policy()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            initial_backoff_ms=self.initial_backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
        )
