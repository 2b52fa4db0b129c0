"""Date-partitioned SessionState persistence on top of the QuotaStore.

Each field of a day's :class:`SessionState` lives under its own key with
the ISO date as suffix, e.g. ``remaining_time_2025-01-15``.  Lists are
stored as JSON, timestamps as ISO 8601 text and durations as whole
seconds.  Missing or malformed values fall back to their defaults so a
hand-edited or half-written database never stops the engine.
"""

import json
import logging
from datetime import date, datetime
from typing import Optional

from screentime.core.models import (
    DaySummary,
    ExtensionEntry,
    PauseLogEntry,
    SessionState,
    SessionStatus,
)
from screentime.persistence.store import QuotaStore

logger = logging.getLogger(__name__)

# field name -> key prefix
KEY_PREFIXES = {
    "remaining_seconds": "remaining_time_",
    "limit_seconds": "daily_limit_",
    "status": "status_",
    "active_seconds_consumed": "session_active_",
    "pause_used_seconds": "pause_used_",
    "pause_started_at": "pause_started_",
    "last_pause_ended_at": "pause_last_end_",
    "pauses": "pause_log_",
    "extensions": "extensions_",
    "warnings_fired": "warnings_fired_",
}


def day_key(field_name: str, day: date) -> str:
    return f"{KEY_PREFIXES[field_name]}{day.isoformat()}"


class SessionRepository:
    """Loads and serialises per-day session state."""

    def __init__(self, store: QuotaStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @staticmethod
    def to_items(state: SessionState) -> dict[str, str]:
        """Render *state* as the key/value pairs that represent it."""
        day = state.date
        return {
            day_key("remaining_seconds", day): str(state.remaining_seconds),
            day_key("limit_seconds", day): str(state.limit_seconds),
            day_key("status", day): state.status.value,
            day_key("active_seconds_consumed", day): str(state.active_seconds_consumed),
            day_key("pause_used_seconds", day): str(state.pause_used_seconds),
            day_key("pause_started_at", day): _format_ts(state.pause_started_at),
            day_key("last_pause_ended_at", day): _format_ts(state.last_pause_ended_at),
            day_key("pauses", day): json.dumps(
                [[p.start.isoformat(), p.end.isoformat()] for p in state.pauses]
            ),
            day_key("extensions", day): json.dumps(
                [[e.timestamp.isoformat(), e.seconds] for e in state.extensions]
            ),
            day_key("warnings_fired", day): json.dumps(sorted(state.warnings_fired)),
        }

    def stored_items(self, day: date) -> dict[str, str]:
        """Return the raw values currently stored for *day*."""
        keys = [day_key(name, day) for name in KEY_PREFIXES]
        return self.store.get_many(keys)

    def exists(self, day: date) -> bool:
        return self.store.get(day_key("remaining_seconds", day)) is not None

    def load(self, day: date, default_limit_seconds: int) -> SessionState:
        """Return the stored state for *day*, or a fresh one seeded with the limit.

        A fresh state is not written here; it is persisted by the first
        transition that commits it.
        """
        raw = self.stored_items(day)
        if day_key("remaining_seconds", day) not in raw:
            logger.info("No session stored for %s; starting a fresh day", day)
            return SessionState.fresh(day, default_limit_seconds)

        limit = _parse_int(raw, day_key("limit_seconds", day), default_limit_seconds)
        state = SessionState(
            date=day,
            limit_seconds=limit,
            remaining_seconds=_parse_int(raw, day_key("remaining_seconds", day), limit),
        )
        state.status = _parse_status(raw.get(day_key("status", day)), state.remaining_seconds)
        state.active_seconds_consumed = _parse_int(raw, day_key("active_seconds_consumed", day), 0)
        state.pause_used_seconds = _parse_int(raw, day_key("pause_used_seconds", day), 0)
        state.pause_started_at = _parse_ts(raw.get(day_key("pause_started_at", day)))
        state.last_pause_ended_at = _parse_ts(raw.get(day_key("last_pause_ended_at", day)))
        state.pauses = _parse_pauses(raw.get(day_key("pauses", day)))
        state.extensions = _parse_extensions(raw.get(day_key("extensions", day)))
        state.warnings_fired = _parse_fired(raw.get(day_key("warnings_fired", day)))

        if state.status is SessionStatus.PAUSED and state.pause_started_at is None:
            logger.warning("Session %s is paused without a start time; resuming", day)
            state.status = SessionStatus.ACTIVE
        if state.remaining_seconds <= 0:
            state.remaining_seconds = 0
            if state.status is SessionStatus.ACTIVE:
                state.status = SessionStatus.BLOCKED
        return state

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def dates(self) -> list[date]:
        """Return every date with stored session state, oldest first."""
        prefix = KEY_PREFIXES["remaining_seconds"]
        result = []
        for key in self.store.keys_with_prefix(prefix):
            try:
                result.append(date.fromisoformat(key[len(prefix):]))
            except ValueError:
                logger.debug("Ignoring malformed session key %s", key)
        return sorted(result)

    def summary(self, day: date) -> Optional[DaySummary]:
        """Return the history row for *day*, or ``None`` when nothing is stored."""
        if not self.exists(day):
            return None
        state = self.load(day, 0)
        return DaySummary(
            date=day,
            limit_seconds=state.limit_seconds,
            used_seconds=state.active_seconds_consumed,
            remaining_seconds=state.remaining_seconds,
            pause_used_seconds=state.pause_used_seconds,
            pause_count=len(state.pauses),
            extended_seconds=sum(e.seconds for e in state.extensions),
        )

    def delete_day(self, day: date) -> None:
        self.store.delete_keys([day_key(name, day) for name in KEY_PREFIXES])


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _format_ts(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def _parse_int(raw: dict[str, str], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Malformed integer %r under %s; using %d", value, key, default)
        return default


def _parse_status(value: Optional[str], remaining: int) -> SessionStatus:
    try:
        return SessionStatus(value)
    except ValueError:
        if value is not None:
            logger.warning("Unknown session status %r; deriving from remaining time", value)
        return SessionStatus.ACTIVE if remaining > 0 else SessionStatus.BLOCKED


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Malformed timestamp %r; ignoring", value)
        return None


def _load_json_list(value: Optional[str]) -> list:
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Malformed JSON list %r; ignoring", value)
        return []
    return data if isinstance(data, list) else []


def _parse_pauses(value: Optional[str]) -> list[PauseLogEntry]:
    entries = []
    for item in _load_json_list(value):
        try:
            entries.append(PauseLogEntry(
                start=datetime.fromisoformat(item[0]),
                end=datetime.fromisoformat(item[1]),
            ))
        except (TypeError, ValueError, IndexError):
            logger.warning("Skipping malformed pause log entry %r", item)
    return entries


def _parse_extensions(value: Optional[str]) -> list[ExtensionEntry]:
    entries = []
    for item in _load_json_list(value):
        try:
            entries.append(ExtensionEntry(
                timestamp=datetime.fromisoformat(item[0]),
                seconds=int(item[1]),
            ))
        except (TypeError, ValueError, IndexError):
            logger.warning("Skipping malformed extension entry %r", item)
    return entries


def _parse_fired(value: Optional[str]) -> set[int]:
    fired = set()
    for item in _load_json_list(value):
        if isinstance(item, int):
            fired.add(item)
    return fired
