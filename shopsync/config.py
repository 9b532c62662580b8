"""Configuration for the sync layer.

Settings can come from:
1. A JSON file (``SyncSettings.from_file``), with ``${VAR}`` and
   ``${VAR:-default}`` expanded from the environment
2. ``SHOPSYNC_*`` environment variables (``SyncSettings.from_env``)
3. Direct keyword arguments

Durations are in seconds.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from shopsync.exceptions import ConfigError

__all__ = [
    "BackendKind",
    "SyncSettings",
    "configure_logging",
    "expand_env_vars",
]

ENV_PREFIX = "SHOPSYNC_"

# Pattern to match ${VAR} or ${VAR:-default} syntax
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class BackendKind(str, Enum):
    """Which remote store the coordinator talks to."""

    PUSH = "push"  # Firebase Realtime Database, live listener
    PULL = "pull"  # Static JSON file (GitHub), one-shot fetch


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` / ``${VAR:-default}`` references in *value*."""

    def replacer(match: re.Match) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        return default if default is not None else ""

    return ENV_VAR_PATTERN.sub(replacer, value)


def _expand_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return expand_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _expand_recursive(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_recursive(item) for item in obj]
    return obj


@dataclass
class SyncSettings:
    """Everything needed to build a cache, a backend and a coordinator."""

    backend: BackendKind = BackendKind.PULL

    # Local cache
    cache_path: Optional[str] = "~/.shopsync/storage.json"
    cache_quota_bytes: Optional[int] = 5 * 1024 * 1024
    data_key: str = "inverted_admin_data"
    last_sync_key: str = "inverted_last_sync"

    # Push backend (Firebase Realtime Database)
    firebase_database_url: Optional[str] = None
    firebase_credentials: Optional[str] = None  # service account JSON path
    firebase_path: str = "content"
    firebase_app_name: str = "shopsync"

    # Pull backend (static JSON on GitHub)
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"
    github_data_file: str = "data/content.json"
    github_token: Optional[str] = None
    content_url: Optional[str] = None  # explicit URL overrides owner/repo
    http_timeout: float = 10.0

    # Coordinator timing
    debounce_seconds: float = 2.0
    grace_delay_seconds: float = 0.5
    staleness_seconds: float = 3600.0
    initial_sync_timeout: float = 10.0
    save_timeout: Optional[float] = 30.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        try:
            self.backend = BackendKind(self.backend)
        except ValueError:
            raise ConfigError(
                f"Unknown backend {self.backend!r}, expected 'push' or 'pull'"
            )

        for name in (
            "debounce_seconds",
            "grace_delay_seconds",
            "staleness_seconds",
            "initial_sync_timeout",
            "save_timeout",
            "http_timeout",
        ):
            value = getattr(self, name)
            if value is None and name == "save_timeout":
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must not be negative")

    def validate(self) -> None:
        """Check that the selected backend has what it needs."""
        if self.backend is BackendKind.PUSH and not self.firebase_database_url:
            raise ConfigError("push backend requires firebase_database_url")
        if self.backend is BackendKind.PULL and not (
            self.content_url or (self.github_owner and self.github_repo)
        ):
            raise ConfigError(
                "pull backend requires content_url or github_owner/github_repo"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Create settings from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logging.getLogger(__name__).warning(
                f"Ignoring unknown settings: {', '.join(sorted(unknown))}"
            )
        defaults = {f.name: f.default for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, str):
                # Values expanded from ${VAR} references arrive as strings
                value = _coerce(key, value, defaults[key])
            values[key] = value
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path | str) -> "SyncSettings":
        """Load settings from a JSON file."""
        path = Path(path).expanduser()
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load settings from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {path} must contain a JSON object")
        return cls.from_dict(_expand_recursive(data))

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "SyncSettings":
        """Load settings from ``SHOPSYNC_<FIELD>`` environment variables."""
        environ = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            data[f.name] = _coerce(f.name, raw, cls.__dataclass_fields__[f.name].default)
        return cls(**data)


def _coerce(name: str, raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the field default."""
    if raw == "" and default is None:
        return None
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes")
    try:
        if isinstance(default, int) and not isinstance(default, bool):
            return int(raw)
        if isinstance(default, float) or name.endswith(("_timeout", "_seconds")):
            return float(raw)
        if name.endswith("_bytes"):
            return int(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}")
    return raw


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging the same way for every entry point."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
