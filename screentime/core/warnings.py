"""One-shot low-time warnings."""

from screentime.core.models import EngineEvent, SessionState, WarningThreshold


class WarningScheduler:
    """Fires each configured warning once per day.

    The fired flags live on the day's :class:`SessionState` so they are
    persisted with it, roll back with it and reset when a new day starts.
    """

    def __init__(self, thresholds: list[WarningThreshold]) -> None:
        self.thresholds = sorted(thresholds, key=lambda w: w.threshold_seconds, reverse=True)

    def check(self, state: SessionState) -> list[EngineEvent]:
        """Return the warnings crossed by ``state.remaining_seconds``, highest threshold first.

        Only call this for a session that is (still) active.
        """
        events = []
        for warning in self.thresholds:
            if warning.threshold_seconds in state.warnings_fired:
                continue
            if state.remaining_seconds <= warning.threshold_seconds:
                state.warnings_fired.add(warning.threshold_seconds)
                events.append(EngineEvent("warning", warning.message))
        return events

    def rearm(self, state: SessionState) -> None:
        """Forget thresholds that remaining time has climbed back above."""
        state.warnings_fired = {
            t for t in state.warnings_fired if state.remaining_seconds <= t
        }

    def mark_passed(self, state: SessionState) -> None:
        """Treat thresholds already below remaining time as fired (no stale warnings)."""
        for warning in self.thresholds:
            if state.remaining_seconds <= warning.threshold_seconds:
                state.warnings_fired.add(warning.threshold_seconds)
