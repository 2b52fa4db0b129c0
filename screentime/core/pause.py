"""Pause eligibility for Screen Time Manager.

Decides whether a self-service pause may start and how long an open pause
may last.  The rules are evaluated in a fixed order and the first one that
matches wins, so callers always get the most relevant reason.
"""

from datetime import datetime

from screentime.core.clock import seconds_between
from screentime.core.models import (
    PauseAvailability,
    PauseAvailabilityKind,
    PauseConfig,
    SessionState,
    SessionStatus,
)


class PauseBudgetEnforcer:
    """Applies the pause budget, cooldown and anti-abuse limits."""

    def __init__(self, config: PauseConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def availability(self, state: SessionState, now: datetime) -> PauseAvailability:
        """Return the pause decision for *state* at *now*.

        Precedence:
        1. already paused      -> ``RESUME_AVAILABLE``
        2. feature switched off -> ``DISABLED``
        3. budget used up      -> ``BUDGET_EXHAUSTED``
        4. recent pause ended  -> ``COOLDOWN(seconds left)``
        5. first pause of the day before enough active time
                               -> ``NEED_MORE_ACTIVE_TIME(seconds left)``
        6. too little time left -> ``TIME_TOO_LOW``
        7. otherwise           -> ``AVAILABLE(budget left)``
        """
        cfg = self.config

        if state.status is SessionStatus.PAUSED:
            return PauseAvailability(PauseAvailabilityKind.RESUME_AVAILABLE)

        if not cfg.enabled:
            return PauseAvailability(PauseAvailabilityKind.DISABLED)

        if state.pause_used_seconds >= cfg.daily_budget_seconds:
            return PauseAvailability(PauseAvailabilityKind.BUDGET_EXHAUSTED)

        if state.last_pause_ended_at is not None:
            since = max(0, int(seconds_between(state.last_pause_ended_at, now)))
            if since < cfg.cooldown_seconds:
                return PauseAvailability(PauseAvailabilityKind.COOLDOWN, cfg.cooldown_seconds - since)

        if not state.pauses and state.active_seconds_consumed < cfg.min_active_seconds:
            return PauseAvailability(
                PauseAvailabilityKind.NEED_MORE_ACTIVE_TIME,
                cfg.min_active_seconds - state.active_seconds_consumed,
            )

        if state.remaining_seconds < cfg.low_time_block_seconds:
            return PauseAvailability(PauseAvailabilityKind.TIME_TOO_LOW)

        return PauseAvailability(
            PauseAvailabilityKind.AVAILABLE,
            cfg.daily_budget_seconds - state.pause_used_seconds,
        )

    def max_pause_seconds(self, state: SessionState) -> int:
        """Longest the current pause may run: the per-pause cap or what's left of the budget."""
        budget_left = max(0, self.config.daily_budget_seconds - state.pause_used_seconds)
        return min(self.config.max_duration_seconds, budget_left)

    def pause_elapsed(self, state: SessionState, now: datetime) -> int:
        """Whole seconds since the open pause started (0 when not paused)."""
        if state.pause_started_at is None:
            return 0
        return max(0, int(seconds_between(state.pause_started_at, now)))

    def pause_remaining(self, state: SessionState, now: datetime) -> int:
        """Seconds until the open pause is ended automatically."""
        if state.status is not SessionStatus.PAUSED:
            return 0
        return max(0, self.max_pause_seconds(state) - self.pause_elapsed(state, now))

    def should_auto_resume(self, state: SessionState, now: datetime) -> bool:
        return (
            state.status is SessionStatus.PAUSED
            and self.pause_elapsed(state, now) >= self.max_pause_seconds(state)
        )
