from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.models.backlink import CheckLog, CheckStatus
from app.services.backlinks.uptime import UptimeWindow, compute_uptime


def _logs(*statuses: CheckStatus) -> list[CheckLog]:
    backlink_id = uuid4()
    now = datetime.now(UTC)
    return [
        CheckLog(backlink_id=backlink_id, checked_at=now - timedelta(hours=index), check_status=status)
        for index, status in enumerate(statuses)
    ]


def test_empty_window_is_fully_healthy():
    assert compute_uptime([]) == 100.0


def test_uptime_is_ratio_rounded_to_two_decimals():
    logs = _logs(CheckStatus.SUCCESS, CheckStatus.FAILED, CheckStatus.SUCCESS)

    assert compute_uptime(logs) == 66.67


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ((CheckStatus.SUCCESS,) * 4, 100.0),
        ((CheckStatus.FAILED,) * 4, 0.0),
        ((CheckStatus.SUCCESS, CheckStatus.FAILED), 50.0),
        ((CheckStatus.FAILED,) * 2 + (CheckStatus.SUCCESS,), 33.33),
    ],
)
def test_uptime_stays_within_bounds(statuses, expected):
    uptime = compute_uptime(_logs(*statuses))

    assert 0.0 <= uptime <= 100.0
    assert uptime == expected


def test_window_starts_the_configured_number_of_days_back():
    now = datetime(2024, 6, 30, tzinfo=UTC)
    window = UptimeWindow(days=30, max_records=100)

    assert window.since(now) == datetime(2024, 5, 31, tzinfo=UTC)


def test_window_reads_settings(monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "backlink_uptime_window_days", 7)
    monkeypatch.setattr(settings, "backlink_uptime_window_size", 20)

    window = UptimeWindow.from_settings()

    assert (window.days, window.max_records) == (7, 20)
