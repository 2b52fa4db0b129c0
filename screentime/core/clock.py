"""Wall-clock source for the engine."""

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Anything that can tell the engine what time it is."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Timezone-aware wall clock.

    The calendar date used for day rollover is the date in *tz*; when no
    zone is configured the machine's local zone is used.
    """

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self.tz = tz

    @classmethod
    def from_name(cls, name: str) -> "SystemClock":
        """Build a clock for an IANA zone name; empty or unknown means local time."""
        if not name:
            return cls()
        try:
            return cls(ZoneInfo(name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.error("Unknown time zone %r; using local time", name)
            return cls()

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

def seconds_between(earlier: datetime, later: datetime) -> float:
    """Real seconds from *earlier* to *later*.

    Aware values are compared on the UTC timeline; subtracting two values
    that share a ``ZoneInfo`` would use wall-clock time and gain or lose an
    hour across a DST change.
    """
    if earlier.tzinfo is not None and later.tzinfo is not None:
        return later.timestamp() - earlier.timestamp()
    return (later - earlier).total_seconds()


def add_seconds(moment: datetime, seconds: float) -> datetime:
    """*moment* shifted by *seconds* of real time, kept in its own zone."""
    if moment.tzinfo is None:
        return moment + timedelta(seconds=seconds)
    shifted = moment.astimezone(timezone.utc) + timedelta(seconds=seconds)
    return shifted.astimezone(moment.tzinfo)
