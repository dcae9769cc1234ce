"""Scheduled trigger for the backlink monitoring batch."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel

from app.config import settings
from app.services.backlinks.scheduler import BatchScheduler, get_batch_scheduler

router = APIRouter()
logger = logging.getLogger(__name__)


class CronRunResponse(BaseModel):
    message: str
    checked: int
    errors: int
    alerts: int
    total: int
    skipped: int


def require_cron_secret(
    secret: str | None = Query(None, description="Shared cron secret."),
    authorization: str | None = Header(default=None),
) -> None:
    """Accept ``?secret=`` or ``Authorization: Bearer <secret>`` when CRON_SECRET is set."""
    expected = settings.cron_secret
    if not expected:
        return
    provided = secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization.split(" ", 1)[1].strip()
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("backlinks.cron.unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get(
    "/cron/backlinks-monitor",
    response_model=CronRunResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def run_backlinks_monitor(
    scheduler: BatchScheduler = Depends(get_batch_scheduler),
) -> CronRunResponse:
    """Run one monitoring batch over the least recently checked verified backlinks."""
    summary = await scheduler.run_batch()
    if summary.already_running:
        message = "Backlink monitoring already in progress"
    elif summary.total == 0:
        message = "No backlinks due for monitoring"
    else:
        message = f"Monitored {summary.checked} of {summary.total} backlinks"
    return CronRunResponse(
        message=message,
        checked=summary.checked,
        errors=summary.errored,
        alerts=summary.alerts_raised,
        total=summary.total,
        skipped=summary.skipped,
    )
