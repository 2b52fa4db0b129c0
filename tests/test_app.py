"""Unit tests for the ScreenTimeApp system tray application.

Since pystray requires a display, all tray-related functionality is mocked.
Tests focus on correct component wiring, popups and menu actions.
"""

import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from screentime.core.config import get_default_config
from screentime.core.models import (
    CommandResult,
    EngineEvent,
    PauseAvailability,
    PauseAvailabilityKind,
    RemoteConfig,
    SessionStatus,
)
from screentime.ui.app import ScreenTimeApp, _create_default_icon


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    cfg = get_default_config()
    cfg["database_path"] = ":memory:"
    cfg["passcode_hash_rounds"] = 4
    return cfg


@pytest.fixture
def app(config):
    """A ScreenTimeApp with components wired against an in-memory store."""
    a = ScreenTimeApp(config=config)
    a.init_components()
    yield a
    a.stop()


# ---------------------------------------------------------------------------
# Initialization tests
# ---------------------------------------------------------------------------

class TestInit:

    def test_wires_processor(self, app):
        assert app.processor is not None
        assert app.processor.current_status() is SessionStatus.ACTIVE
        assert app.ticker is not None
        assert app.ticker.interval == 1

    def test_seeds_settings_and_passcode(self, app):
        assert app.store.get("limit_monday") == "120"
        assert app.store.get("passcode").startswith("$2")

    def test_creates_database_directory(self, config, tmp_path):
        config["database_path"] = str(tmp_path / "nested" / "data.db")
        a = ScreenTimeApp(config=config)
        a.init_components()
        a.stop()
        assert (tmp_path / "nested" / "data.db").exists()

    def test_invalid_retention_keeps_everything(self, config, caplog):
        config["history_retention_days"] = 0
        a = ScreenTimeApp(config=config)
        a.init_components()
        try:
            assert a.processor.retention.keep_days is None
            assert "Invalid history_retention_days" in caplog.text
        finally:
            a.stop()


# ---------------------------------------------------------------------------
# Menu actions
# ---------------------------------------------------------------------------

class TestMenuActions:

    def test_refused_pause_shows_reason(self, app):
        with patch.object(app, "_show_popup") as popup:
            app.toggle_pause()
        popup.assert_called_once_with(
            "Screen Time", "Cannot pause: Need 600 more seconds of active time"
        )

    def test_toggle_resumes_when_paused(self, app):
        app.processor = MagicMock()
        app.processor.pause_availability.return_value = PauseAvailability(
            PauseAvailabilityKind.RESUME_AVAILABLE
        )
        app.processor.request_resume.return_value = CommandResult.success()
        with patch.object(app, "_show_popup") as popup:
            app.toggle_pause()
        app.processor.request_resume.assert_called_once()
        app.processor.request_pause.assert_not_called()
        popup.assert_not_called()

    def test_show_today_stats(self, app):
        with patch.object(app, "_show_popup") as popup:
            app.show_today_stats()
        title, text = popup.call_args[0]
        assert title == "Today's Stats"
        assert text.startswith("Today (")

    def test_show_today_stats_without_processor(self, config, caplog):
        a = ScreenTimeApp(config=config)
        a.show_today_stats()
        assert "Processor not initialized" in caplog.text

    def test_pause_label_and_title(self, app):
        assert app._pause_label() == "Pause (wait 10m)"
        assert app._tray_title().startswith("Screen Time: ")

    def test_open_dashboard(self, app):
        with patch("screentime.ui.app.webbrowser.open") as mock_open:
            app._open_dashboard()
        mock_open.assert_called_once_with("http://127.0.0.1:5566/api/status")


# ---------------------------------------------------------------------------
# Engine events
# ---------------------------------------------------------------------------

class TestEvents:

    def test_warning_popup(self, app):
        with patch.object(app, "_show_popup") as popup:
            app._on_event(EngineEvent("warning", "5 minutes remaining!"))
        popup.assert_called_once_with("Screen Time Warning", "5 minutes remaining!")

    def test_new_day_popup(self, app):
        with patch.object(app, "_show_popup") as popup:
            app._on_event(EngineEvent("day_rolled_over", "2025-01-16"))
        popup.assert_called_once_with("New Day", "A new day has started (2025-01-16).")

    def test_quiet_events(self, app):
        with patch.object(app, "_show_popup") as popup:
            app._on_event(EngineEvent("paused", "Timer paused."))
        popup.assert_not_called()

    def test_popup_without_gui_is_logged(self, app, monkeypatch, caplog):
        caplog.set_level(logging.INFO)
        monkeypatch.setattr("screentime.ui.app.sys.platform", "linux")
        app._show_popup("Screen Time Over", "Go outside")
        assert "Go outside" in caplog.text


# ---------------------------------------------------------------------------
# Background services
# ---------------------------------------------------------------------------

class TestServices:

    def test_remote_disabled_by_default(self, app):
        app._start_remote()
        assert app.telegram is None

    def test_remote_without_token_is_not_started(self, app, caplog):
        app.processor.engine.settings.remote = RemoteConfig(enabled=True, bot_token="")
        app._start_remote()
        assert app.telegram is None
        assert "without a bot token" in caplog.text

    def test_remote_started(self, app):
        app.processor.engine.settings.remote = RemoteConfig(
            enabled=True, bot_token="123:abc", admin_chat_id=5
        )
        with patch("screentime.remote.telegram.TelegramChannel") as MockChannel:
            app._start_remote()
            app._telegram_thread.join(timeout=5)
        MockChannel.assert_called_once_with(app.processor, "123:abc")
        MockChannel.return_value.run.assert_called_once()

    def test_dashboard_disabled(self, app):
        app.config["dashboard"]["enabled"] = False
        with patch("screentime.ui.web.start_dashboard") as mock_start:
            app._start_dashboard()
        mock_start.assert_not_called()

    def test_dashboard_started(self, app):
        with patch("screentime.ui.web.start_dashboard") as mock_start:
            app._start_dashboard()
        mock_start.assert_called_once_with(app.processor, port=5566)

    def test_ticker_thread(self, app):
        app.ticker.run = MagicMock()
        app._start_ticker()
        app._ticker_thread.join(timeout=5)
        app.ticker.run.assert_called_once()


# ---------------------------------------------------------------------------
# Tray and shutdown
# ---------------------------------------------------------------------------

class TestTray:

    def test_creates_icon(self):
        img = _create_default_icon()
        assert img.size == (64, 64)

    def test_run_tray_without_pystray(self, app, caplog):
        with patch.dict(sys.modules, {"pystray": None}):
            app._run_tray()
        assert "running headless" in caplog.text
        assert app.store is None

    def test_stop_closes_store(self, app):
        app.stop()
        assert app.store is None

    def test_stop_idempotent(self, app):
        app.stop()
        app.stop()
        assert app.tray_icon is None
