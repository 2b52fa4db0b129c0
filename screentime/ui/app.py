"""System tray application for Screen Time Manager.

Wires the quota store, engine and command processor together, runs the
ticker (and, when configured, the Telegram channel) in daemon background
threads, starts the local control API and shows a pystray tray icon whose
menu offers pause/resume, today's stats, the dashboard and quit.
"""

import logging
import os
import sys
import threading
import webbrowser
from typing import Any, Optional

from PIL import Image, ImageDraw

from screentime.core.auth import AuthorizationGate
from screentime.core.clock import SystemClock
from screentime.core.commands import CommandProcessor
from screentime.core.config import load_config
from screentime.core.engine import SessionEngine
from screentime.core.models import EngineEvent, PauseAvailabilityKind
from screentime.core.settings import default_items, load_settings
from screentime.core.ticker import Ticker
from screentime.persistence.retention import RetentionPolicy
from screentime.persistence.sessions import SessionRepository
from screentime.persistence.store import QuotaStore
from screentime.reporting.formatter import TextFormatter

logger = logging.getLogger(__name__)

_EVENT_TITLES = {
    "warning": "Screen Time Warning",
    "blocked": "Screen Time Over",
    "auto_resumed": "Pause Ended",
    "day_rolled_over": "New Day",
}


def _create_default_icon() -> Image.Image:
    """Draw a simple 64x64 hourglass-coloured tray icon."""
    img = Image.new("RGB", (64, 64), color=(46, 125, 50))
    draw = ImageDraw.Draw(img)
    draw.ellipse((12, 12, 52, 52), outline=(255, 255, 255), width=4)
    draw.line((32, 32, 32, 18), fill=(255, 255, 255), width=4)
    draw.line((32, 32, 42, 38), fill=(255, 255, 255), width=4)
    return img


class ScreenTimeApp:
    """Main application class that runs Screen Time Manager as a tray app."""

    def __init__(self, config_path: Optional[str] = None,
                 config: Optional[dict[str, Any]] = None) -> None:
        self.config_path = config_path
        self.config = config if config is not None else load_config(config_path)
        self.store: Optional[QuotaStore] = None
        self.processor: Optional[CommandProcessor] = None
        self.ticker: Optional[Ticker] = None
        self.telegram = None  # TelegramChannel when the remote channel is on
        self.tray_icon = None
        self._ticker_thread: Optional[threading.Thread] = None
        self._telegram_thread: Optional[threading.Thread] = None
        self._dashboard_port = self.config.get("dashboard", {}).get("port", 5566)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Initialize all components, start the background threads, and
        display the system tray icon."""
        self.init_components()
        self._start_ticker()
        self._start_remote()
        self._start_dashboard()
        self._run_tray()

    def stop(self) -> None:
        """Stop the background threads and clean up resources."""
        if self.ticker is not None:
            self.ticker.stop()
        if self._ticker_thread is not None:
            self._ticker_thread.join(timeout=5)
            self._ticker_thread = None
        if self.telegram is not None:
            self.telegram.stop()
            self.telegram = None
        if self.store is not None:
            self.store.close()
            self.store = None
        if self.tray_icon is not None:
            try:
                self.tray_icon.stop()
            except Exception:
                logger.debug("Tray icon already stopped")
            self.tray_icon = None

    def show_today_stats(self) -> None:
        """Display today's statistics in a popup window."""
        if self.processor is None:
            logger.warning("Processor not initialized")
            return
        text = TextFormatter.format_today(self.processor.today_stats())
        self._show_popup("Today's Stats", text)

    def toggle_pause(self) -> None:
        """Pause the timer, or resume it when it is already paused."""
        if self.processor is None:
            return
        availability = self.processor.pause_availability()
        if availability.kind is PauseAvailabilityKind.RESUME_AVAILABLE:
            result = self.processor.request_resume()
            action = "resume"
        else:
            result = self.processor.request_pause()
            action = "pause"
        if not result.ok:
            self._show_popup("Screen Time", TextFormatter.format_result(action, result))
        self._refresh_tray()

    # ------------------------------------------------------------------
    # Component initialization
    # ------------------------------------------------------------------

    def init_components(self) -> None:
        """Wire up the store, engine and processor from config."""
        config = self.config

        # Database
        db_path = os.path.expanduser(config["database_path"])
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self.store = QuotaStore(db_path)
        self.store.init_db()
        self.store.seed_defaults(default_items())

        settings = load_settings(self.store)

        gate = AuthorizationGate(
            self.store, settings.remote, hash_rounds=config.get("passcode_hash_rounds", 12)
        )
        gate.ensure_passcode()

        try:
            retention = RetentionPolicy(config.get("history_retention_days"))
        except (TypeError, ValueError):
            logger.warning(
                "Invalid history_retention_days %r; keeping all history",
                config.get("history_retention_days"),
            )
            retention = RetentionPolicy()

        engine = SessionEngine(
            SessionRepository(self.store),
            settings,
            clock_jump_threshold=config.get("clock_jump_threshold_seconds", 3600),
        )
        persistence = config.get("persistence", {})
        self.processor = CommandProcessor(
            engine,
            gate,
            SystemClock.from_name(config.get("timezone", "")),
            retention=retention,
            retry_attempts=persistence.get("retry_attempts", 3),
            retry_wait_seconds=persistence.get("retry_wait_seconds", 0.5),
        )
        self.processor.start()
        self.processor.subscribe(self._on_event)

        self.ticker = Ticker(
            self.processor,
            interval=config.get("tick_interval_seconds", 1),
            on_tick=lambda events: self._refresh_tray(),
        )

    # ------------------------------------------------------------------
    # Background threads
    # ------------------------------------------------------------------

    def _start_ticker(self) -> None:
        """Start the ticker in a daemon background thread."""
        if self.ticker is None or self.ticker.running:
            return
        self._ticker_thread = threading.Thread(
            target=self.ticker.run, daemon=True, name="screentime-ticker"
        )
        self._ticker_thread.start()
        logger.info("Ticker started in background thread")

    def _start_remote(self) -> None:
        """Start the Telegram channel when it is enabled and configured."""
        remote = self.processor.settings().remote
        if not remote.enabled:
            logger.info("Remote channel disabled")
            return
        if not remote.bot_token:
            logger.warning("Remote channel enabled without a bot token; not starting it")
            return

        from screentime.remote.telegram import TelegramChannel

        self.telegram = TelegramChannel(self.processor, remote.bot_token)
        self.processor.subscribe(self.telegram.on_event)
        self._telegram_thread = threading.Thread(
            target=self.telegram.run, daemon=True, name="screentime-telegram"
        )
        self._telegram_thread.start()

    def _start_dashboard(self) -> None:
        """Start the control API in a background thread."""
        if not self.config.get("dashboard", {}).get("enabled", True):
            return
        try:
            from screentime.ui.web import start_dashboard
            start_dashboard(self.processor, port=self._dashboard_port)
        except Exception:
            logger.exception("Failed to start control API")

    # ------------------------------------------------------------------
    # System tray
    # ------------------------------------------------------------------

    def _pause_label(self, item=None) -> str:
        if self.processor is None:
            return "Pause Timer"
        return TextFormatter.pause_menu_label(self.processor.pause_availability())

    def _tray_title(self) -> str:
        if self.processor is None:
            return "Screen Time Manager"
        remaining = TextFormatter.format_clock(self.processor.remaining_seconds())
        return f"Screen Time: {remaining} left"

    def _run_tray(self) -> None:
        """Create and run the pystray system tray icon."""
        try:
            import pystray
            from pystray import Menu, MenuItem
        except Exception:
            logger.warning("System tray not available; running headless until interrupted")
            self._wait_headless()
            return

        menu = Menu(
            MenuItem(self._pause_label, lambda: self.toggle_pause()),
            MenuItem("Today's Stats", lambda: self.show_today_stats()),
            Menu.SEPARATOR,
            MenuItem("Dashboard", lambda: self._open_dashboard()),
            Menu.SEPARATOR,
            MenuItem("Quit", lambda: self._quit()),
        )

        self.tray_icon = pystray.Icon(
            "ScreenTimeManager", _create_default_icon(), self._tray_title(), menu
        )
        self.tray_icon.run()

    def _wait_headless(self) -> None:
        try:
            if self._ticker_thread is not None:
                self._ticker_thread.join()
        except KeyboardInterrupt:
            logger.info("Interrupted")
        self.stop()

    def _refresh_tray(self) -> None:
        if self.tray_icon is None:
            return
        try:
            self.tray_icon.title = self._tray_title()
            self.tray_icon.update_menu()
        except Exception:
            logger.debug("Could not refresh tray icon", exc_info=True)

    def _quit(self) -> None:
        """Quit the application cleanly."""
        self.stop()

    def _open_dashboard(self) -> None:
        """Open the control API status page in the default browser."""
        try:
            webbrowser.open(f"http://127.0.0.1:{self._dashboard_port}/api/status")
        except Exception:
            logger.exception("Failed to open dashboard")

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def _on_event(self, event: EngineEvent) -> None:
        title = _EVENT_TITLES.get(event.name)
        if title is None:
            return
        message = event.message
        if event.name == "day_rolled_over":
            message = f"A new day has started ({event.message})."
        self._show_popup(title, message)

    # ------------------------------------------------------------------
    # UI helpers
    # ------------------------------------------------------------------

    def _show_popup(self, title: str, message: str) -> None:
        """Show a popup with the given message using native macOS dialogs."""
        if sys.platform == "darwin":
            self._osascript_display(title, message)
        else:
            self._fallback_popup(title, message)

    def _osascript_display(self, title: str, message: str) -> None:
        """Display text via a native macOS dialog."""
        import subprocess
        # Escape double quotes for AppleScript
        escaped = message.replace("\\", "\\\\").replace('"', '\\"')
        script = (
            f'display dialog "{escaped}" '
            f'with title "{title}" '
            f'buttons {{"OK"}} default button "OK"'
        )
        try:
            subprocess.Popen(
                ["osascript", "-e", script],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            logger.info("%s:\n%s", title, message)

    def _fallback_popup(self, title: str, message: str) -> None:
        """Log the message when no GUI is available."""
        logger.info("%s:\n%s", title, message)
