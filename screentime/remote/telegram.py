"""Telegram remote control for Screen Time Manager.

Long-polls the Bot API (``getUpdates``) on a background thread and hands
each text message to :meth:`CommandProcessor.handle_remote`.  Only the
configured admin chat ever gets a reply; everyone else is ignored.  The
admin chat also receives startup/shutdown notices and the engine's
warning and blocked events.
"""

import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Optional

from screentime.core.commands import CommandProcessor
from screentime.core.errors import RemoteChannelError
from screentime.core.models import EngineEvent

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"
_NOTIFY_EVENTS = {"warning", "blocked"}


class TelegramChannel:
    """Bot API client plus the polling loop."""

    def __init__(
        self,
        processor: CommandProcessor,
        bot_token: str,
        poll_timeout: int = 30,
        retry_delay: float = 5.0,
    ) -> None:
        self.processor = processor
        self.bot_token = bot_token
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self._offset: Optional[int] = None
        self._running = False

    @property
    def admin_chat_id(self) -> Optional[int]:
        """The currently configured admin chat."""
        return self.processor.gate.remote.admin_chat_id

    # ------------------------------------------------------------------
    # Bot API
    # ------------------------------------------------------------------

    def _call(self, method: str, params: dict[str, Any]) -> Any:
        """POST *params* to a Bot API method and return its ``result``."""
        url = f"{API_BASE}/bot{self.bot_token}/{method}"
        req = urllib.request.Request(
            url,
            data=json.dumps(params).encode("utf-8"),
            headers={"Content-Type": "application/json", "User-Agent": "ScreenTimeManager/1.0"},
        )
        with urllib.request.urlopen(req, timeout=self.poll_timeout + 10) as resp:
            data = resp.read()

        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RemoteChannelError(f"{method}: unreadable response") from exc
        if not payload.get("ok"):
            raise RemoteChannelError(f"{method}: {payload.get('description', 'request failed')}")
        return payload.get("result")

    def send_message(self, chat_id: int, text: str) -> bool:
        """Send *text* to *chat_id*; failures are logged and reported as False."""
        try:
            self._call("sendMessage", {"chat_id": chat_id, "text": text})
        except (urllib.error.URLError, OSError, RemoteChannelError):
            logger.warning("Failed to send Telegram message to %s", chat_id, exc_info=True)
            return False
        return True

    def notify_admin(self, text: str) -> bool:
        if self.admin_chat_id is None:
            return False
        return self.send_message(self.admin_chat_id, text)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll_once(self) -> int:
        """Fetch one batch of updates and answer them; returns how many were seen."""
        params: dict[str, Any] = {"timeout": self.poll_timeout, "allowed_updates": ["message"]}
        if self._offset is not None:
            params["offset"] = self._offset
        updates = self._call("getUpdates", params) or []

        for update in updates:
            self._offset = update["update_id"] + 1
            message = update.get("message") or {}
            text = message.get("text")
            chat_id = (message.get("chat") or {}).get("id")
            if not text or chat_id is None:
                continue
            reply = self.processor.handle_remote(chat_id, text)
            if reply:
                self.send_message(chat_id, reply)
        return len(updates)

    def run(self) -> None:
        """Poll until :meth:`stop` is called; network errors back off and retry."""
        self._running = True
        logger.info("Telegram channel started")
        self.notify_admin("Screen Time Manager started")
        while self._running:
            try:
                self.poll_once()
            except (urllib.error.URLError, OSError, RemoteChannelError) as exc:
                logger.warning("Telegram polling failed: %s; retrying in %.0fs", exc, self.retry_delay)
                time.sleep(self.retry_delay)

    def stop(self) -> None:
        """Stop polling and tell the admin the app is going away."""
        if self._running:
            self._running = False
            self.notify_admin("Screen Time Manager is shutting down")

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def on_event(self, event: EngineEvent) -> None:
        """Forward warning and blocked events to the admin chat."""
        if event.name in _NOTIFY_EVENTS and event.message:
            self.notify_admin(event.message)
