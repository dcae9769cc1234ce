"""State-transition alerts and their delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import httpx

from app.config import settings
from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_ALERT_INTERVAL = timedelta(days=7)
ALERT_INTERVALS: dict[str, timedelta] = {
    "free": timedelta(days=7),
    "basic": timedelta(days=1),
    "power": timedelta(hours=1),
}
DOWNGRADE_PAID_INTERVAL = timedelta(days=1)


class AlertKind(str, Enum):
    DOWN = "down"
    NOFOLLOW_DOWNGRADE = "nofollow_downgrade"


@dataclass(frozen=True)
class AlertEvent:
    """A single degradation detected while monitoring a backlink."""

    backlink_id: UUID
    user_id: str
    source_url: str
    target_url: str
    kind: AlertKind
    detected_at: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "backlink_id": str(self.backlink_id),
            "user_id": self.user_id,
            "source_url": self.source_url,
            "target_url": self.target_url,
            "kind": self.kind.value,
            "detected_at": self.detected_at.isoformat(),
            "details": self.details,
        }


class AlertNotifier(Protocol):
    """Notification sink for backlink alerts."""

    async def notify(self, event: AlertEvent) -> None:
        ...


class NullAlertNotifier(AlertNotifier):
    """Drops every alert; used when no delivery channel is configured."""

    async def notify(self, event: AlertEvent) -> None:
        logger.info(
            "backlinks.alert.dropped",
            extra={"backlink_id": str(event.backlink_id), "kind": event.kind.value},
        )


class WebhookAlertNotifier(AlertNotifier):
    """Posts alerts to a webhook while supporting a kill switch."""

    def __init__(
        self,
        *,
        webhook_url: str | None,
        disabled: bool = False,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = webhook_url
        self._disabled = disabled or not webhook_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    @property
    def disabled(self) -> bool:
        return self._disabled

    async def notify(self, event: AlertEvent) -> None:
        if self._disabled:
            logger.info(
                "backlinks.alert.disabled",
                extra={"backlink_id": str(event.backlink_id), "kind": event.kind.value},
            )
            return
        body = {"category": f"backlink_{event.kind.value}", "payload": event.as_dict()}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=body)
        if response.status_code >= 400:
            logger.error(
                "backlinks.alert.delivery_failed",
                extra={"kind": event.kind.value, "status": response.status_code},
            )
            metrics.increment("alerts.delivery_failed", tags={"kind": event.kind.value})
            return
        metrics.increment("alerts.delivered", tags={"kind": event.kind.value})


def alert_interval_for_tier(tier: str | None, kind: AlertKind = AlertKind.DOWN) -> timedelta:
    """Minimum spacing between delivered alerts of ``kind`` for a subscription tier.

    Downgrade alerts are spaced weekly for free accounts and daily for every
    paid tier.
    """
    normalized = (tier or "").strip().lower() or "free"
    if kind == AlertKind.NOFOLLOW_DOWNGRADE:
        return DEFAULT_ALERT_INTERVAL if normalized == "free" else DOWNGRADE_PAID_INTERVAL
    return ALERT_INTERVALS.get(normalized, DEFAULT_ALERT_INTERVAL)


def alert_intervals_for_tier(tier: str | None) -> dict[AlertKind, timedelta]:
    return {kind: alert_interval_for_tier(tier, kind) for kind in AlertKind}


def build_alert_notifier() -> AlertNotifier:
    if settings.backlink_alert_webhook:
        return WebhookAlertNotifier(
            webhook_url=settings.backlink_alert_webhook,
            disabled=settings.backlink_alert_disable,
        )
    return NullAlertNotifier()
