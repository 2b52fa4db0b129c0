"""Command processor: the single serialisation point for Screen Time Manager.

Ticks from the ticker thread, tray clicks, dashboard requests and remote
chat commands all end up here.  Each one runs to completion (read, decide,
mutate, flush) under one re-entrant lock, so no two mutations interleave.

Persistence faults are retried with bounded exponential backoff.  When the
retries run out a command reports ``failed`` with the state unchanged,
while a tick keeps its in-memory result and logs the error so the clock
never stalls.
"""

import copy
import logging
import threading
from datetime import timedelta
from typing import Any, Callable, Optional

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from screentime.core.auth import AuthorizationGate
from screentime.core.clock import Clock
from screentime.core.engine import SessionEngine
from screentime.core.errors import PersistenceError
from screentime.core.models import (
    CommandResult,
    DaySummary,
    EngineEvent,
    EngineSettings,
    PauseAvailability,
    SessionStatus,
    TodayStats,
)
from screentime.core.settings import settings_to_items, validate_settings
from screentime.persistence.retention import RetentionPolicy
from screentime.reporting.formatter import HELP_TEXT, TextFormatter

logger = logging.getLogger(__name__)

EventListener = Callable[[EngineEvent], None]


def _log_retry(retry_state) -> None:
    logger.warning(
        "Store write failed (attempt %d): %s",
        retry_state.attempt_number, retry_state.outcome.exception(),
    )


class CommandProcessor:
    """Serialises queries and commands against the :class:`SessionEngine`."""

    def __init__(
        self,
        engine: SessionEngine,
        gate: AuthorizationGate,
        clock: Clock,
        retention: Optional[RetentionPolicy] = None,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        self.engine = engine
        self.gate = gate
        self.clock = clock
        self.retention = retention
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait_seconds = retry_wait_seconds
        self._lock = threading.RLock()
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        """Call *listener* for every engine event, outside the lock."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Load today's session; call once before the first tick."""
        with self._lock:
            self._retrying()(self.engine.load, self.clock.now())

    # ------------------------------------------------------------------
    # Queries (never mutate)
    # ------------------------------------------------------------------

    def current_status(self) -> SessionStatus:
        with self._lock:
            return self.engine.state.status

    def remaining_seconds(self) -> int:
        with self._lock:
            return self.engine.state.remaining_seconds

    def pause_availability(self) -> PauseAvailability:
        with self._lock:
            return self.engine.pause_availability(self.clock.now())

    def pause_remaining(self) -> int:
        """Seconds until an open pause ends by itself (0 when not paused)."""
        with self._lock:
            return self.engine.pause_remaining(self.clock.now())

    def today_stats(self) -> TodayStats:
        with self._lock:
            return self.engine.today_stats()

    def history(self, days: int = 7) -> list[DaySummary]:
        """Summaries of the stored days within the last *days* days, oldest first."""
        with self._lock:
            today = self.engine.state.date
            first = today - timedelta(days=max(1, days) - 1)
            repository = self.engine.repository
            summaries = []
            for day in repository.dates():
                if first <= day < today:
                    summary = repository.summary(day)
                    if summary is not None:
                        summaries.append(summary)
            stats = self.engine.today_stats()
            summaries.append(DaySummary(
                date=stats.date,
                limit_seconds=stats.limit_seconds,
                used_seconds=stats.used_seconds,
                remaining_seconds=stats.remaining_seconds,
                pause_used_seconds=stats.pause_used_seconds,
                pause_count=stats.pause_count,
                extended_seconds=stats.extended_seconds,
            ))
            return summaries

    def settings(self) -> EngineSettings:
        with self._lock:
            return copy.deepcopy(self.engine.settings)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def tick(self) -> list[EngineEvent]:
        """Advance the engine to the clock's current time."""
        with self._lock:
            now = self.clock.now()
            try:
                self._retrying()(self.engine.tick, now)
            except PersistenceError as exc:
                logger.error("Could not save session state, keeping it in memory: %s", exc)
                try:
                    self.engine.tick(now, flush=False)
                except PersistenceError as exc:
                    logger.error("Tick skipped: %s", exc)
            events = self.engine.drain_events()
            if self.retention is not None and any(e.name == "day_rolled_over" for e in events):
                self._apply_retention()
        self._publish(events)
        return events

    def _apply_retention(self) -> None:
        try:
            self.retention.apply(self.engine.repository, self.engine.state.date)
        except PersistenceError as exc:
            logger.error("Could not prune old history: %s", exc)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def request_pause(self) -> CommandResult:
        return self._execute(lambda: self.engine.pause(self.clock.now()))

    def request_resume(self) -> CommandResult:
        return self._execute(lambda: self.engine.resume(self.clock.now()))

    def request_extend(self, minutes: int, code: Optional[str]) -> CommandResult:
        def action() -> CommandResult:
            if not self.gate.verify(code):
                return CommandResult.unauthorized()
            return self.engine.extend(self.clock.now(), minutes)
        return self._execute(action)

    def request_unlock(self, code: Optional[str]) -> CommandResult:
        def action() -> CommandResult:
            if not self.gate.verify(code):
                return CommandResult.unauthorized()
            return self.engine.unlock(self.clock.now())
        return self._execute(action)

    def request_reset(self, code: Optional[str]) -> CommandResult:
        def action() -> CommandResult:
            if not self.gate.verify(code):
                return CommandResult.unauthorized()
            return self.engine.reset(self.clock.now())
        return self._execute(action)

    def update_settings(self, new_settings: EngineSettings, code: Optional[str]) -> CommandResult:
        """Validate and store *new_settings*; today's limit is not changed."""
        def action() -> CommandResult:
            if not self.gate.verify(code):
                return CommandResult.unauthorized()
            problems = validate_settings(new_settings)
            if problems:
                logger.warning("Rejected settings update: %s", "; ".join(problems))
                return CommandResult.rejected("invalid_settings")
            self.engine.apply_settings(new_settings, settings_to_items(new_settings))
            self.gate.remote = new_settings.remote
            return CommandResult.success()
        return self._execute(action)

    def change_passcode(self, old: str, new: str, new_confirm: str) -> CommandResult:
        return self._execute(lambda: self.gate.change_passcode(old, new, new_confirm))

    # ------------------------------------------------------------------
    # Remote channel
    # ------------------------------------------------------------------

    def handle_remote(self, sender_id: Optional[int], text: str) -> Optional[str]:
        """Run a chat command and return the reply.

        Returns ``None`` for senders other than the configured admin: they
        get no reply at all.
        """
        if not self.gate.is_authorized_sender(sender_id):
            logger.warning("Ignoring remote command from unauthorized sender %s", sender_id)
            return None

        parts = text.strip().split()
        command = parts[0].split("@")[0].lower() if parts else ""
        args = parts[1:]
        logger.info("Remote command %s from %s", command, sender_id)

        if command == "/status":
            return TextFormatter.format_status(self.today_stats())
        if command == "/time":
            return TextFormatter.format_time(self.remaining_seconds())
        if command == "/extend":
            return self._remote_extend(args)
        if command == "/pause":
            if self.current_status() is SessionStatus.PAUSED:
                return "Timer is already paused. Use /resume to continue."
            result = self.request_pause()
            return "Timer paused" if result.ok else TextFormatter.format_result("pause", result)
        if command == "/resume":
            if self.current_status() is not SessionStatus.PAUSED:
                return "Timer is not paused"
            result = self.request_resume()
            return "Timer resumed" if result.ok else TextFormatter.format_result("resume", result)
        if command == "/history":
            return TextFormatter.format_activity(self.today_stats())
        if command in ("/help", "/start"):
            return HELP_TEXT
        return f"Unknown command: {text.strip()}\nUse /help to see available commands."

    def _remote_extend(self, args: list[str]) -> str:
        try:
            minutes = int(args[0])
        except (IndexError, ValueError):
            minutes = 0
        if minutes <= 0:
            return "Please specify a positive number of minutes"
        limit = self.engine.settings.max_extension_minutes
        if minutes > limit:
            return f"Maximum extension is {limit} minutes"

        # the admin's chat identity stands in for the passcode
        result = self._execute(lambda: self.engine.extend(self.clock.now(), minutes))
        if not result.ok:
            return TextFormatter.format_result("extend", result)
        remaining = TextFormatter.format_clock(self.remaining_seconds())
        return f"Extended by {minutes} minutes\nNew remaining: {remaining}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=5),
            retry=retry_if_exception_type(PersistenceError),
            before_sleep=_log_retry,
            reraise=True,
        )

    def _execute(self, action: Callable[[], CommandResult]) -> CommandResult:
        with self._lock:
            try:
                result = self._retrying()(action)
            except PersistenceError as exc:
                logger.error("Command failed after %d attempts: %s", self.retry_attempts, exc)
                result = CommandResult.failed()
            events = self.engine.drain_events()
        self._publish(events)
        return result

    def _publish(self, events: list[EngineEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Event listener failed for %s", event.name)

    def describe(self) -> dict[str, Any]:
        """JSON-friendly snapshot for the dashboard's status endpoint."""
        with self._lock:
            now = self.clock.now()
            state = self.engine.state
            availability = self.engine.pause_availability(now)
            return {
                "date": state.date.isoformat(),
                "status": state.status.value,
                "remaining_seconds": state.remaining_seconds,
                "limit_seconds": state.limit_seconds,
                "pause": {
                    "availability": availability.kind.value,
                    "seconds": availability.seconds,
                    "remaining_in_pause": self.engine.pause_remaining(now),
                    "label": TextFormatter.pause_menu_label(availability),
                },
            }
