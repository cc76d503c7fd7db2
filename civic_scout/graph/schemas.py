"""Data models owned by the graph layer."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class ScoutLock:
    """Advisory record that a scout run is in progress for a city."""

    city: str
    run_id: str
    started_at: datetime

    def is_stale(self, now: datetime, stale_after: timedelta) -> bool:
        return now - self.started_at > stale_after
