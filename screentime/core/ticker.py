"""Clock driver for Screen Time Manager.

Calls :meth:`CommandProcessor.tick` at a fixed interval from a background
thread.  The engine works out elapsed time from the clock itself, so a late
or skipped tick only delays accounting and never loses time.
"""

import logging
import time
from typing import Callable, Optional

from screentime.core.commands import CommandProcessor
from screentime.core.models import EngineEvent

logger = logging.getLogger(__name__)


class Ticker:
    """Runs the ~1 Hz tick loop until :meth:`stop` is called."""

    def __init__(
        self,
        processor: CommandProcessor,
        interval: float = 1.0,
        on_tick: Optional[Callable[[list[EngineEvent]], None]] = None,
    ) -> None:
        self.processor = processor
        self.interval = interval
        self.on_tick = on_tick
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def tick_once(self) -> list[EngineEvent]:
        """Run one tick; unexpected errors are logged, not raised."""
        try:
            events = self.processor.tick()
        except Exception:
            logger.exception("Tick failed; continuing")
            return []
        if self.on_tick is not None:
            try:
                self.on_tick(events)
            except Exception:
                logger.exception("Tick callback failed")
        return events

    def run(self) -> None:
        """Main loop: tick, then sleep for the interval."""
        self._running = True
        logger.info("Ticker running (interval=%.1fs)", self.interval)
        while self._running:
            self.tick_once()
            time.sleep(self.interval)
        logger.info("Ticker stopped")

    def stop(self) -> None:
        """Signal the run loop to stop."""
        self._running = False
