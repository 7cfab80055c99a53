"""Recent-calls configuration loading and validation.

Reads recent_calls.toml from a config directory, resolves ``${VAR}``
references against the environment, and returns a validated
RecentCallsConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILE_NAME = "recent_calls.toml"

DEFAULT_DAY_SPAN = 60
DEFAULT_MAX_CALLS = 5
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_INTER_BATCH_DELAY_MS = 500
DEFAULT_TIMEOUT_S = 20.0

# Matches ${VAR_NAME} with alphanumeric and underscore names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass(frozen=True)
class ResolutionSettings:
    """Tunables consumed by the resolver.

    ``day_span`` is the recency window in days, ``max_calls`` the maximum
    result size. ``max_concurrent`` and ``inter_batch_delay_ms`` bound the
    remote fallback so it stays under the call-log API rate limits.
    """

    day_span: int = DEFAULT_DAY_SPAN
    max_calls: int = DEFAULT_MAX_CALLS
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS


@dataclass
class LoggingConfig:
    """Logging configuration from [recent_calls.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class RemoteConfig:
    """Remote call-log configuration from [recent_calls.remote] section."""

    base_url: str
    access_token: str = ""
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS


@dataclass
class RecentCallsConfig:
    """Parsed and validated configuration."""

    day_span: int = DEFAULT_DAY_SPAN
    max_calls: int = DEFAULT_MAX_CALLS
    remote: RemoteConfig | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def settings(self) -> ResolutionSettings:
        if self.remote is None:
            return ResolutionSettings(day_span=self.day_span, max_calls=self.max_calls)
        return ResolutionSettings(
            day_span=self.day_span,
            max_calls=self.max_calls,
            max_concurrent=self.remote.max_concurrent,
            inter_batch_delay_ms=self.remote.inter_batch_delay_ms,
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _int_field(section: dict[str, Any], key: str, default: int, *, minimum: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{path}.{key} must be an integer, got {raw!r}")
    if raw < minimum:
        raise ConfigError(f"{path}.{key} must be >= {minimum}, got {raw}")
    return raw


def _parse_remote(raw: Any) -> RemoteConfig | None:
    """Parse the optional [recent_calls.remote] sub-section."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError("recent_calls.remote must be a table")

    base_url = raw.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("Missing required field: recent_calls.remote.base_url")

    access_token = raw.get("access_token", "")
    if not isinstance(access_token, str):
        raise ConfigError("recent_calls.remote.access_token must be a string")

    timeout_raw = raw.get("timeout_s", DEFAULT_TIMEOUT_S)
    if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, int | float):
        raise ConfigError(f"recent_calls.remote.timeout_s must be a number, got {timeout_raw!r}")
    if timeout_raw <= 0:
        raise ConfigError(f"recent_calls.remote.timeout_s must be > 0, got {timeout_raw}")

    path = "recent_calls.remote"
    return RemoteConfig(
        base_url=base_url.strip(),
        access_token=access_token.strip(),
        timeout_s=float(timeout_raw),
        max_concurrent=_int_field(
            raw, "max_concurrent", DEFAULT_MAX_CONCURRENT, minimum=1, path=path
        ),
        inter_batch_delay_ms=_int_field(
            raw, "inter_batch_delay_ms", DEFAULT_INTER_BATCH_DELAY_MS, minimum=0, path=path
        ),
    )


def _parse_logging(raw: Any) -> LoggingConfig:
    """Parse the optional [recent_calls.logging] sub-section."""
    if raw is None:
        return LoggingConfig()
    if not isinstance(raw, dict):
        raise ConfigError("recent_calls.logging must be a table")

    level = str(raw.get("level", "INFO")).upper()
    fmt = str(raw.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(
            f"Invalid recent_calls.logging.format: {fmt!r}. Must be 'text' or 'json'."
        )
    log_root = raw.get("log_root")
    return LoggingConfig(level=level, format=fmt, log_root=str(log_root) if log_root else None)


def load_config(config_dir: Path) -> RecentCallsConfig:
    """Load and validate recent_calls.toml from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or holds invalid values.
    """
    toml_path = Path(config_dir) / CONFIG_FILE_NAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    section = data.get("recent_calls", {})
    if not isinstance(section, dict):
        raise ConfigError("recent_calls must be a table")

    return RecentCallsConfig(
        day_span=_int_field(section, "day_span", DEFAULT_DAY_SPAN, minimum=1, path="recent_calls"),
        max_calls=_int_field(
            section, "max_calls", DEFAULT_MAX_CALLS, minimum=1, path="recent_calls"
        ),
        remote=_parse_remote(section.get("remote")),
        logging=_parse_logging(section.get("logging")),
    )
