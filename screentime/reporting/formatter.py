"""Text formatter for Screen Time Manager.

Maps engine state and decisions to the plain-text strings shown in the
tray menu, the stats popup, the CLI and remote chat replies.  The engine
never produces display text for pause decisions itself; it hands out a
:class:`PauseAvailability` and this module picks the words.
"""

from screentime.core.models import (
    CommandResult,
    DaySummary,
    Outcome,
    PauseAvailability,
    PauseAvailabilityKind,
    SessionStatus,
    TodayStats,
)

HELP_TEXT = (
    "Available commands:\n"
    "/status - remaining time and pause state\n"
    "/time - remaining time only\n"
    "/extend <minutes> - add time\n"
    "/pause - pause the timer\n"
    "/resume - resume the timer\n"
    "/history - today's pause activity\n"
    "/help - this message"
)


class TextFormatter:
    """Formats quota state as human-readable plain text."""

    @staticmethod
    def format_duration(seconds: int) -> str:
        """Format seconds as 'Xh Ym' (e.g., '2h 15m').

        Truncates to whole minutes. Returns '0m' for zero/negative durations.
        """
        if seconds < 0:
            seconds = 0
        total_minutes = seconds // 60
        hours = total_minutes // 60
        minutes = total_minutes % 60

        if hours == 0:
            return f"{minutes}m"
        return f"{hours}h {minutes}m"

    @staticmethod
    def format_clock(seconds: int) -> str:
        """Countdown style: 'M:SS', or 'H:MM:SS' from one hour up."""
        seconds = max(0, seconds)
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        if hours:
            return f"{hours}:{minutes:02d}:{secs:02d}"
        return f"{minutes}:{secs:02d}"

    # ------------------------------------------------------------------
    # Pause decisions
    # ------------------------------------------------------------------

    @staticmethod
    def pause_reason(availability: PauseAvailability) -> str:
        """Why a pause was refused."""
        kind = availability.kind
        if kind is PauseAvailabilityKind.DISABLED:
            return "Pause feature is disabled"
        if kind is PauseAvailabilityKind.BUDGET_EXHAUSTED:
            return "Daily pause budget exhausted"
        if kind is PauseAvailabilityKind.COOLDOWN:
            return f"Cooldown active ({availability.seconds} seconds remaining)"
        if kind is PauseAvailabilityKind.NEED_MORE_ACTIVE_TIME:
            return f"Need {availability.seconds} more seconds of active time"
        if kind is PauseAvailabilityKind.TIME_TOO_LOW:
            return "Time is too low to pause"
        if kind is PauseAvailabilityKind.RESUME_AVAILABLE:
            return "Timer is already paused"
        return "Pause available"

    @staticmethod
    def pause_menu_label(availability: PauseAvailability) -> str:
        """Label of the tray's pause/resume item."""
        kind = availability.kind
        minutes = -(-availability.seconds // 60)  # round up
        if kind is PauseAvailabilityKind.RESUME_AVAILABLE:
            return "Resume Timer"
        if kind is PauseAvailabilityKind.AVAILABLE:
            return f"Pause Timer ({minutes}m left)"
        if kind is PauseAvailabilityKind.COOLDOWN:
            return f"Pause ({minutes}m cooldown)"
        if kind is PauseAvailabilityKind.NEED_MORE_ACTIVE_TIME:
            return f"Pause (wait {minutes}m)"
        if kind is PauseAvailabilityKind.TIME_TOO_LOW:
            return "Pause (Time too low)"
        if kind is PauseAvailabilityKind.BUDGET_EXHAUSTED:
            return "Pause (Budget used)"
        return "Pause (Disabled)"

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    @staticmethod
    def format_time(remaining_seconds: int) -> str:
        return f"{TextFormatter.format_clock(remaining_seconds)} remaining"

    @staticmethod
    def format_status(stats: TodayStats) -> str:
        """Short status block used by the remote channel and ``--status``."""
        lines = [
            "Screen Time Status",
            "-" * 18,
            f"Remaining: {TextFormatter.format_clock(stats.remaining_seconds)}",
            f"Status: {stats.status.value.capitalize()}",
            f"Paused: {'Yes' if stats.status is SessionStatus.PAUSED else 'No'}",
        ]
        if stats.pause_enabled:
            lines.append(f"Pause budget: {stats.pause_remaining_seconds // 60} min")
        else:
            lines.append("Pause budget: disabled")
        return "\n".join(lines)

    @staticmethod
    def format_today(stats: TodayStats) -> str:
        """Today's statistics, as shown by the tray's stats popup."""
        lines = [
            f"Today ({stats.weekday_name}, {stats.date.isoformat()})",
            f"  Daily limit:  {TextFormatter.format_duration(stats.limit_seconds)}",
            f"  Used:         {TextFormatter.format_duration(stats.used_seconds)}",
            f"  Remaining:    {TextFormatter.format_clock(stats.remaining_seconds)}",
        ]
        if stats.extended_seconds:
            lines.append(f"  Extended:     {stats.extended_seconds // 60} min")
        if stats.pause_enabled:
            lines.append(
                f"  Pauses:       {stats.pause_count} "
                f"({stats.pause_used_seconds // 60} of {stats.pause_budget_seconds // 60} min used)"
            )
        return "\n".join(lines)

    @staticmethod
    def format_activity(stats: TodayStats) -> str:
        """Today's pause activity with the pause log."""
        lines = [
            "Today's Activity",
            "-" * 16,
            f"Pause used: {stats.pause_used_seconds // 60} / {stats.pause_budget_seconds // 60} min",
            "",
        ]
        if not stats.pauses:
            lines.append("No pause events today")
        else:
            lines.append("Pause log:")
            for entry in stats.pauses:
                lines.append(
                    f"- {entry.start.strftime('%H:%M')} - {entry.end.strftime('%H:%M')} "
                    f"({TextFormatter.format_clock(entry.duration_seconds)})"
                )
        for ext in stats.extensions:
            sign = "+" if ext.seconds > 0 else "-"
            lines.append(f"Extension at {ext.timestamp.strftime('%H:%M')}: {sign}{abs(ext.seconds) // 60} min")
        return "\n".join(lines)

    @staticmethod
    def format_result(action: str, result: CommandResult) -> str:
        """One-line reply for a command outcome."""
        if result.outcome is Outcome.OK:
            return f"{action.capitalize()} done"
        if result.outcome is Outcome.UNAUTHORIZED:
            return "Wrong passcode"
        if result.outcome is Outcome.FAILED:
            return f"Cannot {action}: could not save, try again"
        if result.availability is not None:
            return f"Cannot {action}: {TextFormatter.pause_reason(result.availability)}"
        return f"Cannot {action}: {_REASONS.get(result.reason, result.reason)}"

    @staticmethod
    def format_history(summaries: list[DaySummary]) -> str:
        """Render day summaries as an aligned table, oldest first.

        Returns lines like:
          Date          Limit    Used  Remaining  Pauses  Extended
          ──────────────────────────────────────────────────────
          2025-01-14  2h 0m   1h 58m       0:02       2      30m
        """
        if not summaries:
            return "No history recorded.\n"

        columns = ["Date", "Limit", "Used", "Remaining", "Pauses", "Extended"]
        rows = [
            [
                s.date.isoformat(),
                TextFormatter.format_duration(s.limit_seconds),
                TextFormatter.format_duration(s.used_seconds),
                TextFormatter.format_clock(s.remaining_seconds),
                str(s.pause_count),
                f"{s.extended_seconds // 60}m",
            ]
            for s in summaries
        ]
        widths = [
            max(len(columns[i]), *(len(r[i]) for r in rows)) for i in range(len(columns))
        ]

        header = "  " + f"{columns[0]:<{widths[0]}}" + "".join(
            f"  {columns[i]:>{widths[i]}}" for i in range(1, len(columns))
        )
        separator = "  " + "─" * (len(header) - 2)
        lines = [header, separator]
        for row in rows:
            lines.append(
                "  " + f"{row[0]:<{widths[0]}}" + "".join(
                    f"  {row[i]:>{widths[i]}}" for i in range(1, len(columns))
                )
            )
        return "\n".join(lines) + "\n"


_REASONS = {
    "blocked": "the daily limit has been reached",
    "not_paused": "the timer is not paused",
    "not_blocked": "the screen is not blocked",
    "invalid_amount": "amount must be non-zero and within the extension limit",
    "not_positive": "remaining time would not stay positive",
    "passcode_mismatch": "the new passcodes do not match",
    "invalid_passcode": "the passcode must be exactly 4 digits",
    "invalid_settings": "the settings are not valid",
}
