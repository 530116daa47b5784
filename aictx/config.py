"""
Tracker configuration.

Defaults reproduce the constants the tracker has always shipped with.
Per-workspace overrides live in ``.ai-context/config.yml``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .retry import BackoffPolicy

logger = logging.getLogger(__name__)

STORE_DIR_NAME = ".ai-context"
CONFIG_FILE = "config.yml"

DEFAULT_CONFIG_TEXT = """\
# aictx configuration (all keys optional)

# Seconds between chat-source polls
poll_interval_s: 5.0
# Quiet period after a chat-source change notification before polling
debounce_s: 0.5
# File changes up to this long after a response are attributed to it
after_window_ms: 600000
# How long file change events are kept in memory
retention_ms: 600000
# Path segments never tracked
ignored_segments:
  - node_modules
  - .git
  - .ai-context
# Provenance branch is <branch_prefix><git user.name>
branch_prefix: ai-context-
git_timeout_s: 30.0
# Re-run attribution for the latest response to catch late edits
rescan_enabled: true
rescan_interval_s: 30.0
rescan_duration_s: 600.0
# Cursor state.vscdb location (auto-detected when unset)
chat_db_path: null
source_backoff:
  max_attempts: 3
  initial_delay: 0.1
  backoff_factor: 2.0
"""


@dataclass
class TrackerConfig:
    """Every tunable of the tracker."""

    poll_interval_s: float = 5.0
    debounce_s: float = 0.5
    after_window_ms: int = 600_000
    retention_ms: int = 600_000
    ignored_segments: tuple[str, ...] = ("node_modules", ".git", STORE_DIR_NAME)
    store_dir_name: str = STORE_DIR_NAME
    branch_prefix: str = "ai-context-"
    git_timeout_s: float = 30.0
    rescan_enabled: bool = True
    rescan_interval_s: float = 30.0
    rescan_duration_s: float = 600.0
    chat_db_path: Path | None = None
    source_backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def store_dir(self, workspace_root: Path) -> Path:
        return workspace_root / self.store_dir_name


_FLOAT_KEYS = {"poll_interval_s", "debounce_s", "git_timeout_s", "rescan_interval_s", "rescan_duration_s"}
_INT_KEYS = {"after_window_ms", "retention_ms"}
_STR_KEYS = {"store_dir_name", "branch_prefix"}


def _coerce(key: str, value: Any) -> Any:
    if key in _FLOAT_KEYS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"config key '{key}' must be a number, got {value!r}")
        return float(value)
    if key in _INT_KEYS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"config key '{key}' must be an integer, got {value!r}")
        return value
    if key in _STR_KEYS:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"config key '{key}' must be a non-empty string")
        return value.strip()
    if key == "rescan_enabled":
        if not isinstance(value, bool):
            raise ValueError(f"config key '{key}' must be true or false")
        return value
    if key == "ignored_segments":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"config key '{key}' must be a list of strings")
        return tuple(value)
    if key == "chat_db_path":
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError(f"config key '{key}' must be a path string")
        return Path(value).expanduser()
    if key == "source_backoff":
        if not isinstance(value, dict):
            raise ValueError(f"config key '{key}' must be a mapping")
        try:
            return BackoffPolicy(**value)
        except TypeError as e:
            raise ValueError(f"config key '{key}': {e}") from e
    raise ValueError(f"unsupported config key '{key}'")


def config_from_mapping(data: dict[str, Any], base: TrackerConfig | None = None) -> TrackerConfig:
    """Apply a mapping of overrides on top of ``base`` (defaults if None)."""
    config = base or TrackerConfig()
    known = {f.name for f in dataclasses.fields(TrackerConfig)}
    overrides: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        overrides[key] = _coerce(key, value)

    config = dataclasses.replace(config, **overrides)
    # The store directory is never tracked, whatever it is called
    if config.store_dir_name not in config.ignored_segments:
        config.ignored_segments = (*config.ignored_segments, config.store_dir_name)
    return config


def load_config(workspace_root: Path, base: TrackerConfig | None = None) -> TrackerConfig:
    """Load ``.ai-context/config.yml`` from the workspace, if present."""
    config = base or TrackerConfig()
    path = config.store_dir(workspace_root) / CONFIG_FILE
    if not path.exists():
        return config

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return config_from_mapping(data, config)


def write_default_config(workspace_root: Path, *, overwrite: bool = False) -> Path:
    """Write the commented default config file. Returns its path."""
    path = TrackerConfig().store_dir(workspace_root) / CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists() and not overwrite:
        return path
    path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return path
