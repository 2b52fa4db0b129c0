"""Configuration loader for Screen Time Manager.

Handles loading, saving, and default creation of config.json, which holds
the bootstrap settings the process needs before it can open the quota
store (database path, tick rate, time zone, dashboard port, ...).  Quota
settings such as limits and the passcode live in the store itself.

Resolves platform-appropriate data directories:
  - macOS:   ~/Library/Application Support/ScreenTimeManager
  - Windows: %APPDATA%/ScreenTimeManager
  - Other:   ~/.screentimemanager
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def get_data_directory() -> Path:
    """Return the platform-appropriate data directory for Screen Time Manager."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    else:
        base = Path.home()
        return base / ".screentimemanager"
    return base / "ScreenTimeManager"


def get_default_config() -> dict[str, Any]:
    """Return the default configuration dictionary."""
    data_dir = get_data_directory()
    return {
        "database_path": str(data_dir / "data.db"),
        "tick_interval_seconds": 1,
        "timezone": "",
        "clock_jump_threshold_seconds": 3600,
        "history_retention_days": None,
        "passcode_hash_rounds": 12,
        "persistence": {
            "retry_attempts": 3,
            "retry_wait_seconds": 0.5,
        },
        "dashboard": {
            "enabled": True,
            "port": 5566,
        },
        "log_level": "INFO",
    }


def get_default_config_path() -> Path:
    """Return the default path for config.json."""
    return get_data_directory() / "config.json"


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from a JSON file.

    If *path* is ``None``, the platform default location is used.
    When the file does not exist, a default configuration is created,
    written to disk, and returned.  If the file exists but is invalid
    JSON, the error is logged and defaults are returned.  Keys missing
    from the file are filled in from the defaults.
    """
    config_path = Path(path) if path is not None else get_default_config_path()

    if not config_path.exists():
        logger.info("Config file not found at %s; creating defaults.", config_path)
        defaults = get_default_config()
        save_config(defaults, config_path)
        return defaults

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("Top-level JSON value must be an object")
    except (json.JSONDecodeError, ValueError, OSError) as exc:
        logger.error("Failed to load config from %s: %s; using defaults.", config_path, exc)
        return get_default_config()

    return _merge_defaults(get_default_config(), data)


def save_config(config: dict[str, Any], path: str | Path | None = None) -> None:
    """Write *config* to a JSON file.

    If *path* is ``None``, the platform default location is used.
    Parent directories are created automatically.
    """
    config_path = Path(path) if path is not None else get_default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)
        fh.write("\n")


def _merge_defaults(defaults: dict[str, Any], loaded: dict[str, Any]) -> dict[str, Any]:
    """Overlay *loaded* on *defaults*, one level of nesting deep."""
    merged = dict(defaults)
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged
