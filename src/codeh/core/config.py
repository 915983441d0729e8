"""Configuration loading (TOML, env vars, explicit overrides)."""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from codeh.errors import ConfigurationError
from codeh.types.config import OrchestratorConfig

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

CONFIG_DIR_NAME = ".codeh"
CONFIG_FILE_NAME = "config.toml"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_optional_float(value: Any) -> float | None:
    if value is None or str(value).strip().lower() in ("", "none"):
        return None
    return float(value)


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


# field name -> converter
_FIELD_PARSERS: dict[str, Callable[[Any], Any]] = {
    "max_iterations": _parse_int,
    "tool_timeout": _parse_optional_float,
    "max_retries": _parse_int,
    "initial_backoff_ms": float,
    "max_backoff_ms": float,
    "parallel": _parse_bool,
    "context_window_tokens": _parse_int,
    "compression_threshold": float,
    "keep_recent_count": _parse_int,
    "model": str,
    "max_tokens": _parse_int,
    "temperature": float,
    "system_prompt": str,
}

ENV_MAP = {
    "CODEH_MAX_ITERATIONS": "max_iterations",
    "CODEH_TOOL_TIMEOUT": "tool_timeout",
    "CODEH_MAX_RETRIES": "max_retries",
    "CODEH_PARALLEL": "parallel",
    "CODEH_CONTEXT_WINDOW": "context_window_tokens",
    "CODEH_COMPRESSION_THRESHOLD": "compression_threshold",
    "CODEH_MODEL": "model",
}


def _coerce(source: str, values: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, raw in values.items():
        parser = _FIELD_PARSERS.get(key)
        if parser is None:
            logger.warning("Ignoring unknown %s setting %r", source, key)
            continue
        try:
            out[key] = parser(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid value for {key} from {source}: {raw!r}", field=key, source=source,
            ) from exc
    return out


def load_env_config() -> dict[str, Any]:
    """Load orchestrator settings from ``CODEH_*`` environment variables."""
    raw = {field: os.environ[var] for var, field in ENV_MAP.items() if var in os.environ}
    return _coerce("environment", raw)


def find_config_file(cwd: str | None = None) -> Path | None:
    """Return the first ``.codeh/config.toml`` found, project before user."""
    search_dirs = []
    if cwd:
        search_dirs.append(Path(cwd))
    search_dirs.append(Path.cwd())
    search_dirs.append(Path.home())

    for d in search_dirs:
        toml_path = d / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if toml_path.exists():
            return toml_path
    return None


def load_toml_config(cwd: str | None = None) -> dict[str, Any]:
    """Load the ``[orchestrator]`` table from ``.codeh/config.toml`` if it exists."""
    path = find_config_file(cwd)
    if path is None:
        return {}
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}
    section = data.get("orchestrator", {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[orchestrator] in {path} must be a table")
    return _coerce(str(path), section)


def load_orchestrator_config(cwd: str | None = None, **overrides: Any) -> OrchestratorConfig:
    """Build an :class:`OrchestratorConfig`.

    Precedence: explicit *overrides* > environment > TOML > defaults. ``None``
    overrides are ignored.
    """
    values: dict[str, Any] = {}
    values.update(load_toml_config(cwd))
    values.update(load_env_config())
    values.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in dataclasses.fields(OrchestratorConfig)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
    try:
        return OrchestratorConfig(**values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
