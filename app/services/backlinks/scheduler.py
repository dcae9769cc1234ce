"""Bounded batch runs of ``monitor`` over verified backlinks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from app.config import settings
from app.models.backlink import Backlink
from app.observability.metrics import metrics
from app.services.backlinks.repositories import BacklinkRepository, get_backlink_repository
from app.services.backlinks.state_machine import BacklinkStateMachine, get_state_machine

logger = logging.getLogger(__name__)

ERROR_RATE_ALERT_THRESHOLD = 0.5


class ItemStatus(str, Enum):
    CHECKED = "checked"
    ERRORED = "errored"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemResult:
    backlink_id: str
    status: ItemStatus
    alerts: int = 0


@dataclass(frozen=True)
class BatchSummary:
    """Aggregated counts for one scheduler run."""

    checked: int
    errored: int
    alerts_raised: int
    total: int
    skipped: int
    duration_ms: float
    already_running: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BatchScheduler:
    """Claims due backlinks and monitors each inside a wall-clock budget."""

    def __init__(
        self,
        *,
        repository: BacklinkRepository,
        state_machine: BacklinkStateMachine,
        concurrency: int | None = None,
        item_reserve_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        resolved_concurrency = concurrency or settings.backlink_batch_concurrency
        if resolved_concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._repository = repository
        self._state_machine = state_machine
        self._concurrency = resolved_concurrency
        self._item_reserve_seconds = (
            state_machine.fetch_timeout_seconds
            if item_reserve_seconds is None
            else item_reserve_seconds
        )
        self._clock = clock
        self._timer = timer
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_batch(
        self, limit: int | None = None, max_wall_clock: float | None = None
    ) -> BatchSummary:
        """Monitor up to ``limit`` due backlinks within ``max_wall_clock`` seconds.

        Per-item failures are counted as errored and never abort the run. Items
        that could not start before the budget ran out are counted as skipped.
        """
        if self._running:
            logger.warning("backlinks.batch.already_running")
            return BatchSummary(
                checked=0,
                errored=0,
                alerts_raised=0,
                total=0,
                skipped=0,
                duration_ms=0.0,
                already_running=True,
            )
        self._running = True
        try:
            return await self._run(
                limit if limit is not None else settings.backlink_batch_limit,
                max_wall_clock if max_wall_clock is not None else settings.backlink_batch_max_seconds,
            )
        finally:
            self._running = False

    async def _run(self, limit: int, max_wall_clock: float) -> BatchSummary:
        start = self._timer()
        deadline = start + max_wall_clock
        claimed = self._repository.claim_due(limit, now=self._clock())
        backlinks = _dedupe(claimed)
        if not backlinks:
            logger.info("backlinks.batch.no_targets")
            return BatchSummary(
                checked=0, errored=0, alerts_raised=0, total=0, skipped=0, duration_ms=0.0
            )

        if self._concurrency == 1:
            results = [await self._process(backlink, deadline) for backlink in backlinks]
        else:
            semaphore = asyncio.Semaphore(self._concurrency)
            results = list(
                await asyncio.gather(
                    *(self._bounded(semaphore, backlink, deadline) for backlink in backlinks)
                )
            )

        duration_ms = (self._timer() - start) * 1000
        summary = BatchSummary(
            checked=sum(1 for result in results if result.status == ItemStatus.CHECKED),
            errored=sum(1 for result in results if result.status == ItemStatus.ERRORED),
            alerts_raised=sum(result.alerts for result in results),
            total=len(backlinks),
            skipped=sum(1 for result in results if result.status == ItemStatus.SKIPPED),
            duration_ms=round(duration_ms, 2),
        )
        metrics.gauge("batch.checked", summary.checked)
        metrics.gauge("batch.errored", summary.errored)
        metrics.gauge("batch.skipped", summary.skipped)
        metrics.timing("batch.duration_ms", summary.duration_ms)
        error_rate = summary.errored / summary.total
        if error_rate > ERROR_RATE_ALERT_THRESHOLD:
            metrics.alert(
                "batch.error_rate",
                value=error_rate,
                threshold=ERROR_RATE_ALERT_THRESHOLD,
                severity="warning",
            )
        logger.info(
            "backlinks.batch.run_complete",
            extra={
                "checked": summary.checked,
                "errored": summary.errored,
                "skipped": summary.skipped,
                "alerts": summary.alerts_raised,
                "total": summary.total,
                "duration_ms": f"{summary.duration_ms:.2f}",
            },
        )
        return summary

    async def _bounded(
        self, semaphore: asyncio.Semaphore, backlink: Backlink, deadline: float
    ) -> ItemResult:
        async with semaphore:
            return await self._process(backlink, deadline)

    async def _process(self, backlink: Backlink, deadline: float) -> ItemResult:
        backlink_id = str(backlink.id)
        if self._timer() + self._item_reserve_seconds > deadline:
            logger.info("backlinks.batch.item_skipped", extra={"backlink_id": backlink_id})
            return ItemResult(backlink_id=backlink_id, status=ItemStatus.SKIPPED)
        try:
            outcome = await self._state_machine.monitor(backlink)
        except Exception as exc:
            logger.exception(
                "backlinks.batch.item_failed",
                extra={
                    "backlink_id": backlink_id,
                    "source_url": backlink.source_url,
                    "code": getattr(exc, "code", None),
                },
            )
            metrics.increment("batch.item_failed")
            return ItemResult(backlink_id=backlink_id, status=ItemStatus.ERRORED)
        return ItemResult(
            backlink_id=backlink_id, status=ItemStatus.CHECKED, alerts=len(outcome.alerts)
        )


def _dedupe(backlinks: Sequence[Backlink]) -> list[Backlink]:
    seen: set[str] = set()
    unique: list[Backlink] = []
    for backlink in backlinks:
        key = str(backlink.id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(backlink)
    return unique


_SCHEDULER_INSTANCE: BatchScheduler | None = None


def get_batch_scheduler() -> BatchScheduler:
    global _SCHEDULER_INSTANCE  # noqa: PLW0603
    if _SCHEDULER_INSTANCE is None:
        _SCHEDULER_INSTANCE = BatchScheduler(
            repository=get_backlink_repository(),
            state_machine=get_state_machine(),
        )
    return _SCHEDULER_INSTANCE
