"""Optional pruning of old per-day session keys."""

import logging
from datetime import date, timedelta
from typing import Optional

from screentime.persistence.sessions import SessionRepository

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Keep the last *keep_days* days of history; ``None`` keeps everything."""

    def __init__(self, keep_days: Optional[int] = None) -> None:
        if keep_days is not None and keep_days < 1:
            raise ValueError("keep_days must be at least 1")
        self.keep_days = keep_days

    def apply(self, repository: SessionRepository, today: date) -> list[date]:
        """Delete every stored day older than the retention window.

        Returns the pruned dates.  Today is always kept.
        """
        if self.keep_days is None:
            return []
        cutoff = today - timedelta(days=self.keep_days - 1)
        pruned = [d for d in repository.dates() if d < cutoff]
        for day in pruned:
            repository.delete_day(day)
        if pruned:
            logger.info("Pruned %d day(s) of history older than %s", len(pruned), cutoff)
        return pruned
