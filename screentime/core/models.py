"""Core data models for Screen Time Manager.

Defines all dataclasses and enums used across the application:
- Settings: DailyLimitConfig, PauseConfig, WarningThreshold, RemoteConfig, EngineSettings
- Session: SessionStatus, PauseLogEntry, ExtensionEntry, SessionState
- Decisions: PauseAvailabilityKind, PauseAvailability
- Commands: Outcome, CommandResult, EngineEvent
- Reporting: TodayStats, DaySummary
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from screentime.core.clock import seconds_between


WEEKDAY_NAMES = [
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass
class DailyLimitConfig:
    """Per-weekday screen time limit, Monday first."""
    seconds_by_weekday: list[int] = field(
        default_factory=lambda: [m * 60 for m in (120, 120, 120, 120, 180, 240, 240)]
    )

    def limit_for(self, day: date) -> int:
        return self.seconds_by_weekday[day.weekday()]


@dataclass
class PauseConfig:
    """Limits governing self-service pauses."""
    enabled: bool = True
    daily_budget_seconds: int = 45 * 60
    max_duration_seconds: int = 20 * 60
    cooldown_seconds: int = 15 * 60
    min_active_seconds: int = 10 * 60
    low_time_block_seconds: int = 60


@dataclass
class WarningThreshold:
    """Emit *message* once per day when remaining time drops to *threshold_seconds*."""
    threshold_seconds: int
    message: str


@dataclass
class RemoteConfig:
    """Credentials for the remote chat channel."""
    enabled: bool = False
    bot_token: str = ""
    admin_chat_id: Optional[int] = None


def _default_warnings() -> list[WarningThreshold]:
    return [
        WarningThreshold(10 * 60, "10 minutes remaining!"),
        WarningThreshold(5 * 60, "5 minutes remaining!"),
    ]


@dataclass
class EngineSettings:
    """Everything the engine reads from the quota store's setting keys."""
    limits: DailyLimitConfig = field(default_factory=DailyLimitConfig)
    pause: PauseConfig = field(default_factory=PauseConfig)
    warnings: list[WarningThreshold] = field(default_factory=_default_warnings)
    blocking_message: str = "Your screen time limit has been reached."
    max_extension_minutes: int = 120
    remote: RemoteConfig = field(default_factory=RemoteConfig)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SessionStatus(Enum):
    """Status of the day's session."""
    ACTIVE = "active"
    PAUSED = "paused"
    BLOCKED = "blocked"


@dataclass
class PauseLogEntry:
    """A completed pause."""
    start: datetime
    end: datetime

    @property
    def duration_seconds(self) -> int:
        return int(seconds_between(self.start, self.end))


@dataclass
class ExtensionEntry:
    """Time granted (or taken back) by a parent."""
    timestamp: datetime
    seconds: int


@dataclass
class SessionState:
    """Quota accounting for a single calendar date."""
    date: date
    limit_seconds: int
    remaining_seconds: int
    status: SessionStatus = SessionStatus.ACTIVE
    active_seconds_consumed: int = 0
    pause_used_seconds: int = 0
    pause_started_at: Optional[datetime] = None
    last_pause_ended_at: Optional[datetime] = None
    pauses: list[PauseLogEntry] = field(default_factory=list)
    extensions: list[ExtensionEntry] = field(default_factory=list)
    warnings_fired: set[int] = field(default_factory=set)  # threshold seconds

    @classmethod
    def fresh(cls, day: date, limit_seconds: int) -> "SessionState":
        """Start-of-day state seeded with the weekday's limit."""
        limit_seconds = max(0, limit_seconds)
        status = SessionStatus.ACTIVE if limit_seconds > 0 else SessionStatus.BLOCKED
        return cls(date=day, limit_seconds=limit_seconds,
                   remaining_seconds=limit_seconds, status=status)


# ---------------------------------------------------------------------------
# Pause decisions
# ---------------------------------------------------------------------------

class PauseAvailabilityKind(Enum):
    """Outcome of the pause eligibility check, in precedence order."""
    RESUME_AVAILABLE = "resume_available"
    DISABLED = "disabled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    COOLDOWN = "cooldown"
    NEED_MORE_ACTIVE_TIME = "need_more_active_time"
    TIME_TOO_LOW = "time_too_low"
    AVAILABLE = "available"


@dataclass(frozen=True)
class PauseAvailability:
    """Tagged pause decision.

    ``seconds`` carries the variant's payload: remaining cooldown for
    ``COOLDOWN``, missing active time for ``NEED_MORE_ACTIVE_TIME`` and
    remaining budget for ``AVAILABLE``.  It is 0 for the other kinds.
    """
    kind: PauseAvailabilityKind
    seconds: int = 0

    @property
    def can_pause(self) -> bool:
        return self.kind is PauseAvailabilityKind.AVAILABLE


# ---------------------------------------------------------------------------
# Commands and events
# ---------------------------------------------------------------------------

class Outcome(Enum):
    """How a command ended."""
    OK = "ok"
    REJECTED = "rejected"          # expected policy outcome, see ``reason``
    UNAUTHORIZED = "unauthorized"  # wrong passcode or unknown sender
    FAILED = "failed"              # persistence fault, state unchanged


@dataclass
class CommandResult:
    """Result of a command submitted to the CommandProcessor."""
    outcome: Outcome
    reason: str = ""
    availability: Optional[PauseAvailability] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def success(cls) -> "CommandResult":
        return cls(Outcome.OK)

    @classmethod
    def rejected(cls, reason: str,
                 availability: Optional[PauseAvailability] = None) -> "CommandResult":
        return cls(Outcome.REJECTED, reason, availability)

    @classmethod
    def unauthorized(cls) -> "CommandResult":
        return cls(Outcome.UNAUTHORIZED, "unauthorized")

    @classmethod
    def failed(cls, reason: str = "persistence_failure") -> "CommandResult":
        return cls(Outcome.FAILED, reason)


@dataclass
class EngineEvent:
    """Something observers may want to announce (popup, chat notice)."""
    name: str  # warning, blocked, auto_resumed, day_rolled_over, paused, resumed, ...
    message: str = ""


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@dataclass
class TodayStats:
    """Snapshot of the current day for the stats dialog and remote replies."""
    date: date
    status: SessionStatus
    limit_seconds: int
    used_seconds: int
    remaining_seconds: int
    extended_seconds: int
    pause_enabled: bool
    pause_budget_seconds: int
    pause_used_seconds: int
    pause_count: int
    pauses: list[PauseLogEntry] = field(default_factory=list)
    extensions: list[ExtensionEntry] = field(default_factory=list)

    @property
    def weekday_name(self) -> str:
        return WEEKDAY_NAMES[self.date.weekday()]

    @property
    def pause_remaining_seconds(self) -> int:
        return max(0, self.pause_budget_seconds - self.pause_used_seconds)


@dataclass
class DaySummary:
    """One row of the history report."""
    date: date
    limit_seconds: int
    used_seconds: int
    remaining_seconds: int
    pause_used_seconds: int
    pause_count: int
    extended_seconds: int
