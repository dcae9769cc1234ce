from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.models.backlink import Backlink
from app.services.backlinks import scheduler as scheduler_module
from app.services.backlinks.errors import ParseError
from app.services.backlinks.repositories import InMemoryBacklinkRepository
from app.services.backlinks.scheduler import BatchScheduler
from tests.helpers.metrics_stub import StubMetrics


class _Outcome:
    def __init__(self, alerts: int = 0) -> None:
        self.alerts = [object()] * alerts


class _StubStateMachine:
    fetch_timeout_seconds = 10.0

    def __init__(self, *, failing: set[str] | None = None, alerting: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.alerting = alerting or set()
        self.calls: list[str] = []
        self.in_flight = 0
        self.peak = 0

    async def monitor(self, backlink: Backlink, *, alert_interval=None):
        self.calls.append(backlink.source_url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
            if backlink.source_url in self.failing:
                raise ParseError("parser blew up")
            return _Outcome(alerts=1 if backlink.source_url in self.alerting else 0)
        finally:
            self.in_flight -= 1


class _Timer:
    """Advances by ``step`` seconds on every read."""

    def __init__(self, step: float = 0.0) -> None:
        self.value = 1000.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


@pytest.fixture
def stub_metrics(monkeypatch) -> StubMetrics:
    stub = StubMetrics()
    monkeypatch.setattr(scheduler_module, "metrics", stub)
    return stub


def _seed(repository: InMemoryBacklinkRepository, count: int, *, verified: bool = True) -> list[Backlink]:
    base = datetime(2024, 6, 1, tzinfo=UTC)
    return [
        repository.create(
            Backlink(
                user_id="user-1",
                source_url=f"https://blog{index}.example.com/",
                target_url="https://target.com",
                is_verified=verified,
                is_active=verified,
                created_at=base + timedelta(minutes=index),
            )
        )
        for index in range(count)
    ]


def _scheduler(repository, machine, **kwargs) -> BatchScheduler:
    kwargs.setdefault("concurrency", 1)
    kwargs.setdefault("item_reserve_seconds", 0.0)
    return BatchScheduler(repository=repository, state_machine=machine, **kwargs)


@pytest.mark.asyncio
async def test_one_failing_item_does_not_abort_the_batch(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 3)
    machine = _StubStateMachine(failing={"https://blog1.example.com/"})

    summary = await _scheduler(repository, machine).run_batch(limit=10, max_wall_clock=60)

    assert (summary.checked, summary.errored, summary.total, summary.skipped) == (2, 1, 3, 0)
    assert len(machine.calls) == 3
    assert stub_metrics.gauges() == {"batch.checked": 2, "batch.errored": 1, "batch.skipped": 0}
    assert stub_metrics.counted("batch.item_failed") == 1
    assert stub_metrics.alert_calls == []


@pytest.mark.asyncio
async def test_unverified_backlinks_are_never_monitored(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 2, verified=False)
    machine = _StubStateMachine()

    summary = await _scheduler(repository, machine).run_batch(limit=10, max_wall_clock=60)

    assert summary.total == 0
    assert machine.calls == []


@pytest.mark.asyncio
async def test_limit_caps_claimed_backlinks(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 5)
    machine = _StubStateMachine()

    summary = await _scheduler(repository, machine).run_batch(limit=2, max_wall_clock=60)

    assert summary.total == 2
    assert machine.calls == ["https://blog0.example.com/", "https://blog1.example.com/"]


@pytest.mark.asyncio
async def test_items_that_cannot_finish_in_budget_are_skipped(stub_metrics):
    repository = InMemoryBacklinkRepository()
    backlinks = _seed(repository, 4)
    machine = _StubStateMachine()
    scheduler = _scheduler(
        repository, machine, item_reserve_seconds=5.0, timer=_Timer(step=10.0)
    )

    summary = await scheduler.run_batch(limit=10, max_wall_clock=20)

    assert summary.checked == 1
    assert summary.skipped == 3
    assert summary.checked + summary.errored + summary.skipped == summary.total
    skipped = repository.get(backlinks[3].id)
    assert skipped.is_verified


@pytest.mark.asyncio
async def test_concurrency_is_bounded(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 6)
    machine = _StubStateMachine()

    summary = await _scheduler(repository, machine, concurrency=2).run_batch(
        limit=10, max_wall_clock=60
    )

    assert summary.checked == 6
    assert 1 <= machine.peak <= 2


@pytest.mark.asyncio
async def test_alerts_are_totalled(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 3)
    machine = _StubStateMachine(alerting={"https://blog0.example.com/", "https://blog2.example.com/"})

    summary = await _scheduler(repository, machine).run_batch(limit=10, max_wall_clock=60)

    assert summary.alerts_raised == 2


@pytest.mark.asyncio
async def test_high_error_rate_emits_metric_alert(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 2)
    machine = _StubStateMachine(
        failing={"https://blog0.example.com/", "https://blog1.example.com/"}
    )

    summary = await _scheduler(repository, machine).run_batch(limit=10, max_wall_clock=60)

    assert summary.errored == 2
    assert stub_metrics.alert_calls[0]["metric"] == "batch.error_rate"
    assert stub_metrics.alert_calls[0]["value"] == 1.0


@pytest.mark.asyncio
async def test_overlapping_runs_are_refused(stub_metrics):
    repository = InMemoryBacklinkRepository()
    _seed(repository, 1)
    gate = asyncio.Event()

    class _SlowMachine(_StubStateMachine):
        async def monitor(self, backlink, *, alert_interval=None):
            await gate.wait()
            return _Outcome()

    scheduler = _scheduler(repository, _SlowMachine())
    first = asyncio.create_task(scheduler.run_batch(limit=10, max_wall_clock=60))
    await asyncio.sleep(0)

    second = await scheduler.run_batch(limit=10, max_wall_clock=60)
    gate.set()
    first_summary = await first

    assert second.already_running is True
    assert second.total == 0
    assert first_summary.checked == 1
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_duplicate_claims_are_processed_once(stub_metrics):
    backlink = Backlink(
        user_id="user-1",
        source_url="https://blog.example.com/",
        target_url="https://target.com",
        is_verified=True,
    )

    class _DuplicatingRepository(InMemoryBacklinkRepository):
        def claim_due(self, limit, *, now):
            return [backlink, backlink.model_copy()]

    machine = _StubStateMachine()
    summary = await _scheduler(_DuplicatingRepository(), machine).run_batch(
        limit=10, max_wall_clock=60
    )

    assert summary.total == 1
    assert machine.calls == ["https://blog.example.com/"]


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        BatchScheduler(
            repository=InMemoryBacklinkRepository(),
            state_machine=_StubStateMachine(),
            concurrency=-1,
        )
