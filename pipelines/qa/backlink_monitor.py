"""Command-line runner for one backlink monitoring batch."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from app.config import settings
from app.services.backlinks.alerts import WebhookAlertNotifier
from app.services.backlinks.errors import BacklinkError
from app.services.backlinks.fetcher import PageFetcher
from app.services.backlinks.repositories import BacklinkStore, build_backlink_repository
from app.services.backlinks.scheduler import BatchScheduler, BatchSummary
from app.services.backlinks.state_machine import BacklinkStateMachine

logger = logging.getLogger("pipelines.qa.backlink_monitor")


class BacklinkMonitorConfigError(BacklinkError):
    """Raised when the runner cannot be configured."""


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-check verified backlinks once.")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.backlink_batch_limit,
        help="Maximum number of backlinks to check.",
    )
    parser.add_argument(
        "--max-seconds",
        type=float,
        default=settings.backlink_batch_max_seconds,
        help="Wall-clock budget for the whole batch.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.backlink_batch_concurrency,
        help="Number of backlinks checked at once.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.backlink_fetch_timeout_seconds,
        help="Per-page fetch timeout in seconds.",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Database holding the backlinks (defaults to DATABASE_URL).",
    )
    parser.add_argument(
        "--alert-webhook",
        default=settings.backlink_alert_webhook,
        help="Webhook for down/nofollow alerts.",
    )
    return parser.parse_args(argv)


def _validate(args: argparse.Namespace, *, require_database: bool) -> None:
    if require_database and not args.database_url:
        raise BacklinkMonitorConfigError(
            "DATABASE_URL is required to run the monitoring batch.",
            code="E_MONITOR_CONFIG",
        )
    if args.limit < 1:
        raise BacklinkMonitorConfigError("--limit must be >= 1", code="E_MONITOR_CONFIG")
    if args.max_seconds <= 0:
        raise BacklinkMonitorConfigError("--max-seconds must be > 0", code="E_MONITOR_CONFIG")
    if args.concurrency < 1:
        raise BacklinkMonitorConfigError("--concurrency must be >= 1", code="E_MONITOR_CONFIG")
    if args.timeout <= 0:
        raise BacklinkMonitorConfigError("--timeout must be > 0", code="E_MONITOR_CONFIG")


def build_scheduler(args: argparse.Namespace, repository: BacklinkStore) -> BatchScheduler:
    notifier = WebhookAlertNotifier(
        webhook_url=args.alert_webhook,
        disabled=settings.backlink_alert_disable,
    )
    machine = BacklinkStateMachine(
        repository=repository,
        fetcher=PageFetcher(timeout_seconds=args.timeout),
        notifier=notifier,
    )
    return BatchScheduler(
        repository=repository,
        state_machine=machine,
        concurrency=args.concurrency,
    )


async def _run_async(args: argparse.Namespace, repository: BacklinkStore) -> BatchSummary:
    scheduler = build_scheduler(args, repository)
    return await scheduler.run_batch(args.limit, args.max_seconds)


def main(argv: Sequence[str] | None = None, *, repository: BacklinkStore | None = None) -> BatchSummary:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    _validate(args, require_database=repository is None)
    if repository is None:
        repository = build_backlink_repository(args.database_url)
    summary = asyncio.run(_run_async(args, repository))
    logger.info(
        "backlinks.monitor_cli.completed",
        extra={
            "checked": summary.checked,
            "errored": summary.errored,
            "skipped": summary.skipped,
            "alerts": summary.alerts_raised,
            "total": summary.total,
        },
    )
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.log_level.upper()))
    try:
        main()
    except BacklinkMonitorConfigError as exc:
        logger.error("backlinks.monitor_cli.config_error", extra={"code": exc.code, "error": str(exc)})
        raise SystemExit(1) from exc
