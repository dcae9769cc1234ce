"""Rolling uptime derived from a backlink's recent check history."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.config import settings
from app.models.backlink import CheckLog, CheckStatus

EMPTY_WINDOW_UPTIME = 100.0


@dataclass(frozen=True)
class UptimeWindow:
    """The most recent ``max_records`` logs inside the trailing ``days``."""

    days: int = 30
    max_records: int = 100

    @classmethod
    def from_settings(cls) -> UptimeWindow:
        return cls(
            days=settings.backlink_uptime_window_days,
            max_records=settings.backlink_uptime_window_size,
        )

    def since(self, now: datetime) -> datetime:
        return now - timedelta(days=self.days)


def compute_uptime(logs: Sequence[CheckLog]) -> float:
    """Percentage of successful checks, rounded to two decimals.

    An empty window counts as fully healthy (100.00).
    """
    total = len(logs)
    if total == 0:
        return EMPTY_WINDOW_UPTIME
    successes = sum(1 for log in logs if log.check_status == CheckStatus.SUCCESS)
    return round(100.0 * successes / total, 2)
