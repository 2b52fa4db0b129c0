"""Session state machine for Screen Time Manager.

Owns the authoritative :class:`SessionState` for today and is the only
component that mutates it.  Every transition follows the same pattern:

1. copy the live state into a draft,
2. apply the transition to the draft,
3. flush the changed keys to the quota store in one transaction,
4. swap the draft in as the live state.

If step 3 raises :class:`PersistenceError` the live state is untouched and
the error propagates to the caller (the command processor retries it).
Ticks may instead be applied with ``flush=False``; the unflushed keys are
kept and written by the next successful flush.

Auto-resume is not a timer: it is evaluated on every tick from
``pause_started_at``, so a restart mid-pause is handled by the first tick.
"""

import copy
import logging
from datetime import datetime
from typing import Optional

from screentime.core.clock import add_seconds, seconds_between
from screentime.core.models import (
    CommandResult,
    EngineEvent,
    EngineSettings,
    ExtensionEntry,
    PauseAvailability,
    PauseLogEntry,
    SessionState,
    SessionStatus,
    TodayStats,
)
from screentime.core.pause import PauseBudgetEnforcer
from screentime.core.warnings import WarningScheduler
from screentime.persistence.sessions import SessionRepository

logger = logging.getLogger(__name__)


class SessionEngine:
    """Remaining-time accounting, status transitions and day rollover."""

    def __init__(self, repository: SessionRepository, settings: EngineSettings,
                 clock_jump_threshold: int = 3600) -> None:
        self.repository = repository
        self.settings = settings
        self.clock_jump_threshold = clock_jump_threshold
        self.enforcer = PauseBudgetEnforcer(settings.pause)
        self.warnings = WarningScheduler(settings.warnings)

        self._state: Optional[SessionState] = None
        self._flushed: dict[str, str] = {}
        self._dirty: dict[str, str] = {}
        self._events: list[EngineEvent] = []
        self._last_tick: Optional[datetime] = None
        self._carry = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise RuntimeError("SessionEngine.load() has not been called")
        return self._state

    @property
    def loaded(self) -> bool:
        return self._state is not None

    def load(self, now: datetime) -> SessionState:
        """Load (or lazily create) the session for ``now.date()``.

        The first tick afterwards counts no elapsed time.
        """
        today = now.date()
        state = self.repository.load(today, self.settings.limits.limit_for(today))
        self._flushed = self.repository.stored_items(today)
        self._dirty = {}
        self._state = state
        self._last_tick = None
        self._carry = 0.0
        logger.info(
            "Session %s loaded: %s, %ds remaining",
            today, state.status.value, state.remaining_seconds,
        )
        return state

    def apply_settings(self, settings: EngineSettings,
                       extra_items: Optional[dict[str, str]] = None) -> None:
        """Switch to *settings*, writing *extra_items* in the same transaction.

        Today's limit stays frozen.  Warning thresholds that remaining time
        is already below are marked as fired so they don't go off at once.
        """
        draft = copy.deepcopy(self.state)
        scheduler = WarningScheduler(settings.warnings)
        scheduler.mark_passed(draft)
        self._commit([draft], flush=True, extra_items=extra_items)

        self.settings = settings
        self.enforcer = PauseBudgetEnforcer(settings.pause)
        self.warnings = scheduler
        logger.info("Engine settings updated")

    def drain_events(self) -> list[EngineEvent]:
        """Return and forget the events of committed transitions."""
        events, self._events = self._events, []
        return events

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def tick(self, now: datetime, flush: bool = True) -> list[EngineEvent]:
        """Advance the session to *now* and return the events it produced."""
        if now.date() != self.state.date:
            return self._roll_over(now, flush)

        whole, carry = self._elapsed(now)
        draft = copy.deepcopy(self.state)
        events: list[EngineEvent] = []

        if draft.status is SessionStatus.ACTIVE:
            deduct = min(whole, draft.remaining_seconds)
            draft.remaining_seconds -= deduct
            draft.active_seconds_consumed += deduct
            if draft.remaining_seconds <= 0:
                draft.remaining_seconds = 0
                draft.status = SessionStatus.BLOCKED
                logger.info("Daily limit reached for %s", draft.date)
                events.append(EngineEvent("blocked", self.settings.blocking_message))
            else:
                events.extend(self.warnings.check(draft))
        elif draft.status is SessionStatus.PAUSED and self.enforcer.should_auto_resume(draft, now):
            duration = self.enforcer.max_pause_seconds(draft)
            self._end_pause(draft, now, duration)
            logger.info("Pause reached its %ds maximum; resuming", duration)
            events.append(EngineEvent("auto_resumed", "Pause time is over."))

        self._commit([draft], flush, events=events)
        self._last_tick = now
        self._carry = carry if draft.status is SessionStatus.ACTIVE else 0.0
        return events

    def _elapsed(self, now: datetime) -> tuple[int, float]:
        """Whole seconds to account for since the last tick, plus the fractional carry."""
        if self._last_tick is None:
            return 0, 0.0
        seconds = seconds_between(self._last_tick, now)
        if seconds < 0:
            logger.warning("Clock moved back %.0fs; counting no time", -seconds)
            return 0, 0.0
        if seconds > self.clock_jump_threshold:
            logger.warning(
                "Clock jumped %.0fs forward; counting %ds", seconds, self.clock_jump_threshold
            )
            seconds = self.clock_jump_threshold
        total = seconds + self._carry
        whole = int(total)
        return whole, total - whole

    def _roll_over(self, now: datetime, flush: bool) -> list[EngineEvent]:
        old = copy.deepcopy(self.state)
        today = now.date()
        if today < old.date:
            logger.warning("Calendar date moved back from %s to %s", old.date, today)

        if old.status is SessionStatus.PAUSED:
            duration = min(self.enforcer.pause_elapsed(old, now), self.enforcer.max_pause_seconds(old))
            self._end_pause(old, now, duration)

        new = self.repository.load(today, self.settings.limits.limit_for(today))
        events = [EngineEvent("day_rolled_over", today.isoformat())]
        self._commit([old, new], flush, events=events)
        self._last_tick = now
        self._carry = 0.0
        logger.info("Day rolled over from %s to %s", old.date, today)
        return events

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def pause(self, now: datetime) -> CommandResult:
        state = self.state
        if state.status is SessionStatus.BLOCKED:
            return CommandResult.rejected("blocked")
        availability = self.enforcer.availability(state, now)
        if not availability.can_pause:
            return CommandResult.rejected(availability.kind.value, availability)

        draft = copy.deepcopy(state)
        draft.status = SessionStatus.PAUSED
        draft.pause_started_at = now
        self._commit([draft], flush=True, events=[EngineEvent("paused", "Timer paused.")])
        self._carry = 0.0
        logger.info("Pause started (%ds of budget left)", availability.seconds)
        return CommandResult.success()

    def resume(self, now: datetime) -> CommandResult:
        state = self.state
        if state.status is not SessionStatus.PAUSED:
            return CommandResult.rejected("not_paused")

        draft = copy.deepcopy(state)
        duration = min(self.enforcer.pause_elapsed(draft, now), self.enforcer.max_pause_seconds(draft))
        self._end_pause(draft, now, duration)
        self._commit([draft], flush=True, events=[EngineEvent("resumed", "Timer resumed.")])
        self._last_tick = now
        self._carry = 0.0
        logger.info("Pause ended after %ds", duration)
        return CommandResult.success()

    def extend(self, now: datetime, minutes: int) -> CommandResult:
        """Add (or, with a negative amount, take back) *minutes* of time."""
        if minutes == 0 or abs(minutes) > self.settings.max_extension_minutes:
            return CommandResult.rejected("invalid_amount")
        state = self.state
        seconds = minutes * 60
        if state.remaining_seconds + seconds <= 0:
            return CommandResult.rejected("not_positive")

        draft = copy.deepcopy(state)
        draft.remaining_seconds += seconds
        draft.extensions.append(ExtensionEntry(now, seconds))
        if draft.status is SessionStatus.BLOCKED:
            draft.status = SessionStatus.ACTIVE
        self.warnings.rearm(draft)
        event = EngineEvent("extended", f"Time extended by {minutes} minutes.")
        self._commit([draft], flush=True, events=[event])
        self._unblocked(state, now)
        logger.info("Extended by %d minutes; %ds remaining", minutes, draft.remaining_seconds)
        return CommandResult.success()

    def unlock(self, now: datetime) -> CommandResult:
        if self.state.status is not SessionStatus.BLOCKED:
            return CommandResult.rejected("not_blocked")
        return self._restore_limit(now, "unlocked", "Screen unlocked.")

    def reset(self, now: datetime) -> CommandResult:
        return self._restore_limit(now, "reset", "Timer reset.")

    def _restore_limit(self, now: datetime, event_name: str, message: str) -> CommandResult:
        state = self.state
        draft = copy.deepcopy(state)
        draft.remaining_seconds = draft.limit_seconds
        if draft.status is SessionStatus.BLOCKED and draft.remaining_seconds > 0:
            draft.status = SessionStatus.ACTIVE
        self.warnings.rearm(draft)
        self._commit([draft], flush=True, events=[EngineEvent(event_name, message)])
        self._unblocked(state, now)
        logger.info("Remaining time restored to %ds (%s)", draft.remaining_seconds, event_name)
        return CommandResult.success()

    def _unblocked(self, previous: SessionState, now: datetime) -> None:
        # time spent blocked is not owed
        if previous.status is SessionStatus.BLOCKED:
            self._last_tick = now
            self._carry = 0.0

    def _end_pause(self, state: SessionState, now: datetime, duration: int) -> None:
        start = state.pause_started_at or now
        state.pauses.append(PauseLogEntry(start, add_seconds(start, duration)))
        state.pause_used_seconds += duration
        state.pause_started_at = None
        state.last_pause_ended_at = now
        state.status = SessionStatus.ACTIVE if state.remaining_seconds > 0 else SessionStatus.BLOCKED

    # ------------------------------------------------------------------
    # Queries (never mutate)
    # ------------------------------------------------------------------

    def pause_availability(self, now: datetime) -> PauseAvailability:
        return self.enforcer.availability(self.state, now)

    def pause_remaining(self, now: datetime) -> int:
        return self.enforcer.pause_remaining(self.state, now)

    def today_stats(self) -> TodayStats:
        state = self.state
        return TodayStats(
            date=state.date,
            status=state.status,
            limit_seconds=state.limit_seconds,
            used_seconds=state.active_seconds_consumed,
            remaining_seconds=state.remaining_seconds,
            extended_seconds=sum(e.seconds for e in state.extensions),
            pause_enabled=self.settings.pause.enabled,
            pause_budget_seconds=self.settings.pause.daily_budget_seconds,
            pause_used_seconds=state.pause_used_seconds,
            pause_count=len(state.pauses),
            pauses=list(state.pauses),
            extensions=list(state.extensions),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _commit(self, drafts: list[SessionState], flush: bool,
                events: Optional[list[EngineEvent]] = None,
                extra_items: Optional[dict[str, str]] = None) -> None:
        """Flush the keys that differ from the store, then make ``drafts[-1]`` live."""
        pending = dict(self._dirty)
        for draft in drafts:
            for key, value in self.repository.to_items(draft).items():
                if self._flushed.get(key) != value:
                    pending[key] = value
        if extra_items:
            pending.update(extra_items)

        if flush:
            self.repository.store.set_many(pending)
            self._flushed.update(pending)
            self._dirty = {}
        else:
            self._dirty = pending

        self._state = drafts[-1]
        if len(drafts) > 1:
            prefix_date = drafts[-1].date.isoformat()
            self._flushed = {k: v for k, v in self._flushed.items() if k.endswith(prefix_date)}
        if events:
            self._events.extend(events)
