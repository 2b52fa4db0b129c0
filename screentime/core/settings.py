"""Engine settings kept in the quota store.

The store only knows strings, so this module owns the mapping between the
static setting keys and :class:`EngineSettings`.  Durations are stored in
minutes, like the settings dialog shows them.  Reading is forgiving: a
missing or malformed value falls back to its default and is logged.
Writing goes through :func:`validate_settings` first.
"""

import json
import logging
from dataclasses import asdict
from typing import Any, Optional

from screentime.core.errors import ConfigError
from screentime.core.models import (
    DailyLimitConfig,
    EngineSettings,
    PauseConfig,
    RemoteConfig,
    WEEKDAY_NAMES,
    WarningThreshold,
)
from screentime.persistence.store import QuotaStore

logger = logging.getLogger(__name__)

WEEKDAY_KEYS = [
    "limit_monday", "limit_tuesday", "limit_wednesday", "limit_thursday",
    "limit_friday", "limit_saturday", "limit_sunday",
]

# key -> (PauseConfig field, unit multiplier)
_PAUSE_KEYS = {
    "pause_daily_budget": ("daily_budget_seconds", 60),
    "pause_max_duration": ("max_duration_seconds", 60),
    "pause_cooldown": ("cooldown_seconds", 60),
    "pause_min_active_time": ("min_active_seconds", 60),
    "pause_low_time_block": ("low_time_block_seconds", 60),
}

MINUTES_PER_DAY = 24 * 60


def default_items() -> dict[str, str]:
    """Setting keys and their default string values."""
    return settings_to_items(EngineSettings())


def load_settings(store: QuotaStore) -> EngineSettings:
    """Read every setting key from *store*, falling back to defaults."""
    defaults = EngineSettings()
    settings = EngineSettings()

    limits = []
    for i, key in enumerate(WEEKDAY_KEYS):
        minutes = _read_int(store, key, defaults.limits.seconds_by_weekday[i] // 60,
                            0, MINUTES_PER_DAY)
        limits.append(minutes * 60)
    settings.limits = DailyLimitConfig(limits)

    pause = PauseConfig()
    pause.enabled = _read_bool(store, "pause_enabled", defaults.pause.enabled)
    for key, (field_name, unit) in _PAUSE_KEYS.items():
        default_minutes = getattr(defaults.pause, field_name) // unit
        setattr(pause, field_name, _read_int(store, key, default_minutes, 0, MINUTES_PER_DAY) * unit)
    settings.pause = pause

    settings.warnings = _read_warnings(store, defaults.warnings)
    settings.blocking_message = store.get("blocking_message") or defaults.blocking_message
    settings.max_extension_minutes = _read_int(
        store, "max_extension_minutes", defaults.max_extension_minutes, 1, MINUTES_PER_DAY
    )

    chat_id = store.get("telegram_admin_chat_id")
    settings.remote = RemoteConfig(
        enabled=_read_bool(store, "telegram_enabled", False),
        bot_token=store.get("telegram_bot_token") or "",
        admin_chat_id=_parse_chat_id(chat_id),
    )
    return settings


def settings_to_items(settings: EngineSettings) -> dict[str, str]:
    """Render *settings* as store key/value pairs (passcode excluded)."""
    items: dict[str, str] = {}
    for key, seconds in zip(WEEKDAY_KEYS, settings.limits.seconds_by_weekday):
        items[key] = str(seconds // 60)
    items["pause_enabled"] = "1" if settings.pause.enabled else "0"
    for key, (field_name, unit) in _PAUSE_KEYS.items():
        items[key] = str(getattr(settings.pause, field_name) // unit)
    items["warnings"] = json.dumps([
        {"minutes": w.threshold_seconds // 60, "message": w.message}
        for w in settings.warnings
    ])
    items["blocking_message"] = settings.blocking_message
    items["max_extension_minutes"] = str(settings.max_extension_minutes)
    items["telegram_enabled"] = "1" if settings.remote.enabled else "0"
    items["telegram_bot_token"] = settings.remote.bot_token
    items["telegram_admin_chat_id"] = (
        str(settings.remote.admin_chat_id) if settings.remote.admin_chat_id is not None else ""
    )
    return items


def validate_settings(settings: EngineSettings) -> list[str]:
    """Return a list of problems; empty means *settings* may be saved."""
    problems = []
    if len(settings.limits.seconds_by_weekday) != 7:
        problems.append("exactly seven daily limits are required")
    for seconds in settings.limits.seconds_by_weekday:
        if not 0 <= seconds <= MINUTES_PER_DAY * 60:
            problems.append(f"daily limit {seconds}s is outside 0..24h")
        elif seconds % 60:
            problems.append(f"daily limit {seconds}s is not a whole number of minutes")
    pause = settings.pause
    for field_name, _unit in _PAUSE_KEYS.values():
        value = getattr(pause, field_name)
        if not 0 <= value <= MINUTES_PER_DAY * 60:
            problems.append(f"{field_name} {value}s is outside 0..24h")
        elif value % 60:
            problems.append(f"{field_name} {value}s is not a whole number of minutes")
    if pause.max_duration_seconds <= 0 and pause.enabled:
        problems.append("max pause duration must be positive when pausing is enabled")
    thresholds = [w.threshold_seconds for w in settings.warnings]
    if len(set(thresholds)) != len(thresholds):
        problems.append("warning thresholds must be unique")
    if any(t <= 0 for t in thresholds):
        problems.append("warning thresholds must be positive")
    if any(t % 60 for t in thresholds):
        problems.append("warning thresholds must be whole minutes")
    if not 1 <= settings.max_extension_minutes <= MINUTES_PER_DAY:
        problems.append("max extension must be between 1 and 1440 minutes")
    if settings.remote.enabled and not settings.remote.bot_token:
        problems.append("remote channel needs a bot token")
    return problems


# ---------------------------------------------------------------------------
# JSON-facing representation (dashboard API)
# ---------------------------------------------------------------------------

def settings_to_dict(settings: EngineSettings, include_secrets: bool = False) -> dict[str, Any]:
    """Minutes-based dictionary for the control API."""
    pause = settings.pause
    remote = asdict(settings.remote)
    if not include_secrets:
        remote["bot_token"] = "***" if settings.remote.bot_token else ""
    return {
        "limits_minutes": {
            name.lower(): seconds // 60
            for name, seconds in zip(WEEKDAY_NAMES, settings.limits.seconds_by_weekday)
        },
        "pause": {
            "enabled": pause.enabled,
            "daily_budget_minutes": pause.daily_budget_seconds // 60,
            "max_duration_minutes": pause.max_duration_seconds // 60,
            "cooldown_minutes": pause.cooldown_seconds // 60,
            "min_active_minutes": pause.min_active_seconds // 60,
            "low_time_block_minutes": pause.low_time_block_seconds // 60,
        },
        "warnings": [
            {"minutes": w.threshold_seconds // 60, "message": w.message}
            for w in settings.warnings
        ],
        "blocking_message": settings.blocking_message,
        "max_extension_minutes": settings.max_extension_minutes,
        "remote": remote,
    }


def settings_from_dict(data: dict[str, Any], base: EngineSettings) -> EngineSettings:
    """Apply a (possibly partial) minutes-based dictionary on top of *base*.

    Raises :class:`ConfigError` when a value has the wrong type.
    """
    if not isinstance(data, dict):
        raise ConfigError("settings must be a JSON object")
    try:
        limits = list(base.limits.seconds_by_weekday)
        for i, name in enumerate(WEEKDAY_NAMES):
            value = data.get("limits_minutes", {}).get(name.lower())
            if value is not None:
                limits[i] = int(value) * 60

        pause_data = data.get("pause", {})
        pause = PauseConfig(
            enabled=_flag(pause_data, "enabled", base.pause.enabled),
            daily_budget_seconds=_minutes(pause_data, "daily_budget_minutes", base.pause.daily_budget_seconds),
            max_duration_seconds=_minutes(pause_data, "max_duration_minutes", base.pause.max_duration_seconds),
            cooldown_seconds=_minutes(pause_data, "cooldown_minutes", base.pause.cooldown_seconds),
            min_active_seconds=_minutes(pause_data, "min_active_minutes", base.pause.min_active_seconds),
            low_time_block_seconds=_minutes(pause_data, "low_time_block_minutes", base.pause.low_time_block_seconds),
        )

        if "warnings" in data:
            warnings = [
                WarningThreshold(int(w["minutes"]) * 60, str(w.get("message", "")))
                for w in data["warnings"]
            ]
        else:
            warnings = list(base.warnings)

        remote_data = data.get("remote", {})
        bot_token = remote_data.get("bot_token", base.remote.bot_token)
        if bot_token == "***":
            bot_token = base.remote.bot_token
        remote = RemoteConfig(
            enabled=_flag(remote_data, "enabled", base.remote.enabled),
            bot_token=str(bot_token or ""),
            admin_chat_id=_parse_chat_id(remote_data.get("admin_chat_id", base.remote.admin_chat_id)),
        )

        return EngineSettings(
            limits=DailyLimitConfig(limits),
            pause=pause,
            warnings=warnings,
            blocking_message=str(data.get("blocking_message", base.blocking_message)),
            max_extension_minutes=int(data.get("max_extension_minutes", base.max_extension_minutes)),
            remote=remote,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid settings: {exc}") from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _minutes(data: dict[str, Any], key: str, default_seconds: int) -> int:
    if key not in data:
        return default_seconds
    return int(data[key]) * 60


def _flag(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, not {value!r}")
    return value


def _read_int(store: QuotaStore, key: str, default: int, low: int, high: int) -> int:
    value = store.get(key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Setting %s=%r is not a number; using %d", key, value, default)
        return default
    if not low <= parsed <= high:
        logger.warning("Setting %s=%d is outside %d..%d; using %d", key, parsed, low, high, default)
        return default
    return parsed


def _read_bool(store: QuotaStore, key: str, default: bool) -> bool:
    value = store.get(key)
    if value is None:
        return default
    return value.strip() == "1"


def _read_warnings(store: QuotaStore, defaults: list[WarningThreshold]) -> list[WarningThreshold]:
    value = store.get("warnings")
    if value is None:
        return list(defaults)
    try:
        data = json.loads(value)
        warnings = [
            WarningThreshold(int(item["minutes"]) * 60, str(item.get("message", "")))
            for item in data
        ]
    except (json.JSONDecodeError, TypeError, KeyError, ValueError):
        logger.warning("Malformed warnings setting %r; using defaults", value)
        return list(defaults)
    return [w for w in warnings if w.threshold_seconds > 0]


def _parse_chat_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Malformed admin chat id %r; remote channel has no admin", value)
        return None
