"""Tests for the CommandProcessor: serialisation, retries, auth and remote commands."""

import threading
import time
from datetime import date, datetime
from unittest.mock import patch

import pytest

from conftest import ADMIN_CHAT_ID, advance
from screentime.core.errors import PersistenceError
from screentime.core.models import (
    DailyLimitConfig,
    EngineSettings,
    Outcome,
    SessionStatus,
)
from screentime.persistence.retention import RetentionPolicy
from screentime.reporting.formatter import HELP_TEXT


@pytest.fixture
def processor(make_processor):
    return make_processor()


def _limit(seconds):
    return EngineSettings(limits=DailyLimitConfig([seconds] * 7))


def _flaky(store, failures):
    """set_many replacement that raises *failures* times, then writes."""
    real = store.set_many
    calls = []

    def set_many(items):
        calls.append(items)
        if len(calls) <= failures:
            raise PersistenceError("database is locked")
        real(items)

    return set_many, calls


# ---------------------------------------------------------------------------
# Passcode-protected commands
# ---------------------------------------------------------------------------

class TestProtectedCommands:

    def test_wrong_code_changes_nothing(self, processor):
        result = processor.request_extend(10, "1111")
        assert result.outcome is Outcome.UNAUTHORIZED
        assert processor.remaining_seconds() == 7200

    def test_missing_code(self, processor):
        assert processor.request_reset(None).outcome is Outcome.UNAUTHORIZED

    def test_correct_code(self, processor):
        assert processor.request_extend(10, "0000").ok
        assert processor.remaining_seconds() == 7800

    def test_unlock_and_reset(self, make_processor, clock):
        processor = make_processor(_limit(100))
        advance(processor, clock, 100, step=100)
        assert processor.current_status() is SessionStatus.BLOCKED
        assert processor.request_unlock("1234").outcome is Outcome.UNAUTHORIZED
        assert processor.request_unlock("0000").ok
        assert processor.remaining_seconds() == 100
        assert processor.request_unlock("0000").reason == "not_blocked"
        assert processor.request_reset("0000").ok

    def test_change_passcode(self, processor):
        assert processor.change_passcode("0000", "1357", "1357").ok
        assert processor.request_extend(5, "0000").outcome is Outcome.UNAUTHORIZED
        assert processor.request_extend(5, "1357").ok


# ---------------------------------------------------------------------------
# Persistence faults
# ---------------------------------------------------------------------------

class TestRetries:

    def test_persistent_failure_reports_failed(self, processor, store, caplog):
        with patch.object(store, "set_many", side_effect=PersistenceError("disk full")) as mock:
            result = processor.request_extend(10, "0000")

        assert result.outcome is Outcome.FAILED
        assert mock.call_count == 3
        assert processor.remaining_seconds() == 7200
        assert "Command failed after 3 attempts" in caplog.text

    def test_transient_failure_is_retried(self, processor, store):
        set_many, calls = _flaky(store, failures=1)
        with patch.object(store, "set_many", side_effect=set_many):
            result = processor.request_extend(10, "0000")

        assert result.ok
        assert len(calls) == 2
        assert store.get("remaining_time_2025-01-15") == "7800"

    def test_failed_tick_keeps_counting_in_memory(self, processor, store, clock, caplog):
        clock.advance(5)
        with patch.object(store, "set_many", side_effect=PersistenceError("disk full")):
            processor.tick()

        assert processor.remaining_seconds() == 7195
        assert store.get("remaining_time_2025-01-15") == "7200"
        assert "keeping it in memory" in caplog.text

        clock.advance(1)
        processor.tick()
        assert store.get("remaining_time_2025-01-15") == "7194"

    def test_failed_start_raises(self, make_processor, store):
        with patch.object(store, "get_many", side_effect=PersistenceError("unreadable")):
            with pytest.raises(PersistenceError):
                make_processor()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TestEvents:

    def test_listeners_receive_command_events(self, processor):
        received = []
        processor.subscribe(received.append)
        processor.request_extend(10, "0000")
        assert [e.name for e in received] == ["extended"]

    def test_listeners_receive_tick_events(self, make_processor, clock):
        processor = make_processor(_limit(3))
        received = []
        processor.subscribe(received.append)
        advance(processor, clock, 3)
        assert [e.name for e in received] == ["blocked"]

    def test_failing_listener_does_not_stop_others(self, processor, caplog):
        def broken(event):
            raise RuntimeError("popup crashed")

        received = []
        processor.subscribe(broken)
        processor.subscribe(received.append)
        processor.request_extend(1, "0000")

        assert len(received) == 1
        assert "Event listener failed for extended" in caplog.text

    def test_no_events_for_rejected_command(self, processor):
        received = []
        processor.subscribe(received.append)
        processor.request_resume()
        assert received == []


# ---------------------------------------------------------------------------
# History and retention
# ---------------------------------------------------------------------------

class TestHistory:

    def test_history_includes_stored_days_and_today(self, processor, clock):
        advance(processor, clock, 60, step=60)
        clock.set(datetime(2025, 1, 16, 8, 0))
        processor.tick()

        rows = processor.history(7)
        assert [r.date for r in rows] == [date(2025, 1, 15), date(2025, 1, 16)]
        assert rows[0].used_seconds == 60
        assert rows[1].used_seconds == 0

        assert [r.date for r in processor.history(1)] == [date(2025, 1, 16)]

    def test_retention_prunes_on_rollover(self, make_processor, repository, clock):
        processor = make_processor(retention=RetentionPolicy(keep_days=1))
        advance(processor, clock, 10)
        assert repository.exists(date(2025, 1, 15))

        clock.set(datetime(2025, 1, 16, 8, 0))
        events = processor.tick()

        assert "day_rolled_over" in [e.name for e in events]
        assert not repository.exists(date(2025, 1, 15))
        assert repository.exists(date(2025, 1, 16))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestUpdateSettings:

    def test_requires_passcode(self, processor, store):
        new = processor.settings()
        new.limits.seconds_by_weekday[2] = 30 * 60
        assert processor.update_settings(new, "9999").outcome is Outcome.UNAUTHORIZED
        assert store.get("limit_wednesday") is None

    def test_invalid_settings_rejected(self, processor, caplog):
        new = processor.settings()
        new.limits.seconds_by_weekday = [3600] * 6
        result = processor.update_settings(new, "0000")
        assert result.reason == "invalid_settings"
        assert "Rejected settings update" in caplog.text

    def test_limit_change_applies_from_next_day(self, processor, store, clock):
        new = processor.settings()
        new.limits.seconds_by_weekday[2] = 30 * 60
        new.limits.seconds_by_weekday[3] = 45 * 60
        new.remote.admin_chat_id = 7

        assert processor.update_settings(new, "0000").ok
        assert store.get("limit_wednesday") == "30"
        assert processor.today_stats().limit_seconds == 7200
        assert processor.handle_remote(7, "/time") is not None

        clock.set(datetime(2025, 1, 16, 8, 0))
        processor.tick()
        assert processor.today_stats().limit_seconds == 45 * 60

    def test_settings_returns_a_copy(self, processor):
        copy = processor.settings()
        copy.max_extension_minutes = 1
        assert processor.settings().max_extension_minutes == 120


# ---------------------------------------------------------------------------
# Remote chat commands
# ---------------------------------------------------------------------------

class TestRemoteCommands:

    def test_unauthorized_sender_gets_no_reply(self, processor):
        assert processor.handle_remote(ADMIN_CHAT_ID + 1, "/extend 60") is None
        assert processor.handle_remote(None, "/status") is None
        assert processor.remaining_seconds() == 7200

    def test_status(self, processor):
        reply = processor.handle_remote(ADMIN_CHAT_ID, "/status")
        assert reply.startswith("Screen Time Status")
        assert "Remaining: 2:00:00" in reply
        assert "Paused: No" in reply
        assert "Pause budget: 45 min" in reply

    def test_command_with_bot_suffix(self, processor):
        reply = processor.handle_remote(ADMIN_CHAT_ID, "/Status@ScreenTimeBot")
        assert reply.startswith("Screen Time Status")

    def test_time(self, processor):
        assert processor.handle_remote(ADMIN_CHAT_ID, "/time") == "2:00:00 remaining"

    @pytest.mark.parametrize("text", ["/extend", "/extend abc", "/extend -5", "/extend 0"])
    def test_extend_needs_positive_minutes(self, processor, text):
        assert processor.handle_remote(ADMIN_CHAT_ID, text) == (
            "Please specify a positive number of minutes"
        )

    def test_extend_over_maximum(self, processor):
        assert processor.handle_remote(ADMIN_CHAT_ID, "/extend 500") == (
            "Maximum extension is 120 minutes"
        )
        assert processor.remaining_seconds() == 7200

    def test_extend(self, processor):
        reply = processor.handle_remote(ADMIN_CHAT_ID, "/extend 15")
        assert reply == "Extended by 15 minutes\nNew remaining: 2:15:00"
        assert processor.remaining_seconds() == 8100

    def test_extend_save_failure(self, processor, store):
        with patch.object(store, "set_many", side_effect=PersistenceError("disk full")):
            reply = processor.handle_remote(ADMIN_CHAT_ID, "/extend 15")
        assert reply == "Cannot extend: could not save, try again"

    def test_pause_refused_with_reason(self, processor):
        assert processor.handle_remote(ADMIN_CHAT_ID, "/pause") == (
            "Cannot pause: Need 600 more seconds of active time"
        )

    def test_pause_and_resume(self, processor, clock):
        advance(processor, clock, 601, step=601)

        assert processor.handle_remote(ADMIN_CHAT_ID, "/pause") == "Timer paused"
        assert processor.handle_remote(ADMIN_CHAT_ID, "/pause") == (
            "Timer is already paused. Use /resume to continue."
        )
        advance(processor, clock, 120, step=120)
        assert processor.handle_remote(ADMIN_CHAT_ID, "/resume") == "Timer resumed"
        assert processor.handle_remote(ADMIN_CHAT_ID, "/resume") == "Timer is not paused"

        history = processor.handle_remote(ADMIN_CHAT_ID, "/history")
        assert "Pause used: 2 / 45 min" in history
        assert "Pause log:" in history
        assert "(2:00)" in history

    def test_history_without_pauses(self, processor):
        reply = processor.handle_remote(ADMIN_CHAT_ID, "/history")
        assert reply.startswith("Today's Activity")
        assert "No pause events today" in reply

    @pytest.mark.parametrize("text", ["/help", "/start"])
    def test_help(self, processor, text):
        assert processor.handle_remote(ADMIN_CHAT_ID, text) == HELP_TEXT

    def test_unknown_command(self, processor):
        assert processor.handle_remote(ADMIN_CHAT_ID, "/reboot now") == (
            "Unknown command: /reboot now\nUse /help to see available commands."
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def test_describe(processor, clock):
    advance(processor, clock, 601, step=601)
    processor.request_pause()
    clock.advance(200)

    data = processor.describe()

    assert data["date"] == "2025-01-15"
    assert data["status"] == "paused"
    assert data["remaining_seconds"] == 7200 - 601
    assert data["pause"]["availability"] == "resume_available"
    assert data["pause"]["remaining_in_pause"] == 1000
    assert data["pause"]["label"] == "Resume Timer"


def test_pause_queries(processor, clock):
    availability = processor.pause_availability()
    assert not availability.can_pause
    assert processor.pause_remaining() == 0
    assert processor.current_status() is SessionStatus.ACTIVE


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrentCommands:

    def test_ledger_stays_consistent(self, processor, clock):
        done = threading.Event()
        errors = []
        extended = []

        def guarded(fn):
            def run():
                try:
                    fn()
                except Exception as exc:
                    errors.append(exc)
            return run

        def ticker():
            try:
                for _ in range(3000):
                    clock.advance(1)
                    processor.tick()
            finally:
                done.set()

        def extender():
            for _ in range(50):
                if processor.request_extend(1, "0000").ok:
                    extended.append(60)

        def pauser():
            while not done.is_set():
                processor.request_pause()
                time.sleep(0.001)
                processor.request_resume()

        threads = [threading.Thread(target=guarded(fn)) for fn in (ticker, extender, pauser, pauser)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert not any(t.is_alive() for t in threads)
        processor.request_resume()
        state = processor.engine.state
        assert sum(p.duration_seconds for p in state.pauses) == state.pause_used_seconds
        assert sum(e.seconds for e in state.extensions) == sum(extended)
        assert state.remaining_seconds == 7200 + sum(extended) - state.active_seconds_consumed
        assert state.active_seconds_consumed + state.pause_used_seconds <= 3000
