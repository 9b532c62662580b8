"""Decide whether the cached content is old enough to warrant a resync."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_THRESHOLD = timedelta(hours=1)


@dataclass(frozen=True)
class StalenessPolicy:
    """Time-based staleness check over the last sync marker."""

    threshold: timedelta = DEFAULT_THRESHOLD

    def is_outdated(
        self, last_synced_at: Optional[datetime], now: Optional[datetime] = None
    ) -> bool:
        """True if never synced, or if the last sync is older than the threshold."""
        if last_synced_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return (now - last_synced_at) > self.threshold
