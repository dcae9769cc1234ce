"""Verification and monitoring transitions for a single backlink."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from app.models.backlink import (
    Backlink,
    CheckLog,
    CheckStatus,
    DetectedLinkType,
    LinkType,
    VerificationStatus,
)
from app.observability.metrics import metrics
from app.services.backlinks import urls
from app.services.backlinks.alerts import AlertEvent, AlertKind, AlertNotifier, build_alert_notifier
from app.services.backlinks.errors import FetchError, ParseError
from app.services.backlinks.fetcher import PageFetcher
from app.services.backlinks.matcher import LinkMatch, LinkMatcher
from app.services.backlinks.repositories import BacklinkStore, get_backlink_repository
from app.services.backlinks.uptime import UptimeWindow, compute_uptime

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
AlertInterval = timedelta | Mapping[AlertKind, timedelta]

NOT_FOUND_MESSAGE = "Link not found on source page"


class CheckReason(str, Enum):
    NOT_FOUND = "not_found"
    UNREACHABLE = "unreachable"


class CheckMode(str, Enum):
    VERIFY = "verify"
    MONITOR = "monitor"


@dataclass(frozen=True)
class Observation:
    """What one fetch + match of the source page saw."""

    match: LinkMatch
    http_status: int | None
    response_time_ms: int
    reason: CheckReason | None = None
    error_kind: str | None = None
    error_message: str | None = None

    @property
    def found(self) -> bool:
        return self.match.found


@dataclass(frozen=True)
class VerifyOutcome:
    backlink: Backlink
    log: CheckLog
    verified: bool
    link_type: DetectedLinkType
    anchor_text: str | None
    reason: CheckReason | None
    http_status: int | None
    response_time_ms: int
    error_message: str | None


@dataclass(frozen=True)
class MonitorOutcome:
    backlink: Backlink
    log: CheckLog
    found: bool
    link_type: DetectedLinkType
    http_status: int | None
    response_time_ms: int
    uptime_percentage: float
    reason: CheckReason | None
    error_message: str | None
    alerts: list[AlertEvent] = field(default_factory=list)
    alerts_delivered: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BacklinkStateMachine:
    """Applies one check to a backlink: log it, recompute uptime, persist, alert.

    ``verify`` sets or clears ``is_verified``. ``monitor`` re-evaluates
    ``is_active``; it promotes an unverified backlink once the link is seen
    but never clears verification, so a verified backlink stays verified
    through any number of failed checks.
    """

    def __init__(
        self,
        *,
        repository: BacklinkStore,
        fetcher: PageFetcher,
        matcher: LinkMatcher | None = None,
        notifier: AlertNotifier,
        window: UptimeWindow | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._repository = repository
        self._fetcher = fetcher
        self._matcher = matcher or LinkMatcher()
        self._notifier = notifier
        self._window = window or UptimeWindow.from_settings()
        self._clock = clock

    @property
    def fetch_timeout_seconds(self) -> float:
        return self._fetcher.timeout_seconds

    async def verify(self, backlink: Backlink) -> VerifyOutcome:
        """Confirm a claimed link once. Raises InvalidUrl before any network call."""
        self._validate(backlink)
        observation = await self.observe(backlink.source_url, backlink.target_url)
        now = self._clock()
        log = self._record(backlink, observation, now, CheckMode.VERIFY)
        uptime = self._uptime(backlink, now)

        updated = backlink.model_copy(deep=True)
        updated.verification_attempts += 1
        updated.last_verified_at = now
        updated.last_checked_at = now
        updated.uptime_percentage = uptime
        if observation.found:
            updated.is_verified = True
            updated.verification_status = VerificationStatus.VERIFIED
            updated.is_active = True
            updated.link_type = LinkType(observation.match.link_type.value)
            if not updated.anchor_text and observation.match.anchor_text:
                updated.anchor_text = observation.match.anchor_text
        else:
            updated.is_verified = False
            updated.verification_status = VerificationStatus.FAILED
            updated.is_active = False
        saved = self._repository.save(updated)

        metrics.increment(
            "checks.completed",
            tags={"mode": CheckMode.VERIFY.value, "status": log.check_status.value},
        )
        logger.info(
            "backlinks.verify.completed",
            extra={
                "backlink_id": str(backlink.id),
                "verified": saved.is_verified,
                "link_type": observation.match.link_type.value,
                "reason": observation.reason.value if observation.reason else None,
                "http_status": observation.http_status,
            },
        )
        return VerifyOutcome(
            backlink=saved,
            log=log,
            verified=observation.found,
            link_type=observation.match.link_type,
            anchor_text=observation.match.anchor_text,
            reason=observation.reason,
            http_status=observation.http_status,
            response_time_ms=observation.response_time_ms,
            error_message=observation.error_message,
        )

    async def monitor(
        self, backlink: Backlink, *, alert_interval: AlertInterval | None = None
    ) -> MonitorOutcome:
        """Re-check a backlink and raise alerts on degradation.

        With ``alert_interval`` set, alerts are still reported but delivery is
        skipped while ``last_alert_sent_at`` falls inside the interval. A
        mapping sets a separate interval per alert kind.
        """
        self._validate(backlink)
        observation = await self.observe(backlink.source_url, backlink.target_url)
        now = self._clock()
        log = self._record(backlink, observation, now, CheckMode.MONITOR)
        uptime = self._uptime(backlink, now)

        alerts: list[AlertEvent] = []
        updated = backlink.model_copy(deep=True)
        updated.last_checked_at = now
        updated.uptime_percentage = uptime
        if observation.found:
            detected = LinkType(observation.match.link_type.value)
            if backlink.link_type == LinkType.DOFOLLOW and detected == LinkType.NOFOLLOW:
                alerts.append(
                    self._event(
                        backlink,
                        AlertKind.NOFOLLOW_DOWNGRADE,
                        now,
                        {"previous_link_type": backlink.link_type.value, "link_type": detected.value},
                    )
                )
            updated.is_active = True
            updated.failure_count = 0
            updated.link_type = detected
            if not backlink.is_verified:
                updated.is_verified = True
                updated.verification_status = VerificationStatus.VERIFIED
                updated.last_verified_at = now
                if not updated.anchor_text and observation.match.anchor_text:
                    updated.anchor_text = observation.match.anchor_text
        else:
            updated.is_active = False
            updated.failure_count += 1
            updated.last_failed_at = now
            if backlink.is_active:
                alerts.append(
                    self._event(
                        backlink,
                        AlertKind.DOWN,
                        now,
                        {
                            "reason": observation.reason.value if observation.reason else None,
                            "http_status": observation.http_status,
                            "error_message": observation.error_message,
                        },
                    )
                )

        deliver = bool(alerts) and all(
            self._delivery_due(backlink, _interval_for(alert_interval, event.kind), now)
            for event in alerts
        )
        if deliver:
            updated.last_alert_sent_at = now
        saved = self._repository.save(updated)

        for event in alerts:
            metrics.increment("alerts.raised", tags={"kind": event.kind.value})
            if deliver:
                await self._dispatch(event)
            else:
                metrics.increment("alerts.suppressed", tags={"kind": event.kind.value})
                logger.info(
                    "backlinks.alert.suppressed",
                    extra={
                        "backlink_id": str(backlink.id),
                        "kind": event.kind.value,
                        "last_alert_sent_at": (
                            backlink.last_alert_sent_at.isoformat()
                            if backlink.last_alert_sent_at
                            else None
                        ),
                    },
                )

        metrics.increment(
            "checks.completed",
            tags={"mode": CheckMode.MONITOR.value, "status": log.check_status.value},
        )
        metrics.timing("checks.response_time_ms", observation.response_time_ms)
        logger.info(
            "backlinks.monitor.completed",
            extra={
                "backlink_id": str(backlink.id),
                "active": saved.is_active,
                "link_type": observation.match.link_type.value,
                "uptime_percentage": uptime,
                "alerts": [event.kind.value for event in alerts],
            },
        )
        return MonitorOutcome(
            backlink=saved,
            log=log,
            found=observation.found,
            link_type=observation.match.link_type,
            http_status=observation.http_status,
            response_time_ms=observation.response_time_ms,
            uptime_percentage=uptime,
            reason=observation.reason,
            error_message=observation.error_message,
            alerts=alerts,
            alerts_delivered=deliver,
        )

    async def observe(
        self, source_url: str, target_url: str, *, match_host: bool = False
    ) -> Observation:
        """Fetch ``source_url`` and look for ``target_url``; fetch/parse errors become results."""
        try:
            page = await self._fetcher.fetch(source_url)
        except FetchError as exc:
            return Observation(
                match=LinkMatch.not_found(),
                http_status=exc.status_code,
                response_time_ms=exc.elapsed_ms or 0,
                reason=CheckReason.UNREACHABLE,
                error_kind=exc.kind,
                error_message=str(exc),
            )
        try:
            match = self._matcher.find_link(
                page.body, page.final_url or source_url, target_url, match_host=match_host
            )
        except ParseError as exc:
            logger.warning(
                "backlinks.match.parse_failed",
                extra={"source_url": source_url, "code": exc.code},
            )
            return Observation(
                match=LinkMatch.not_found(),
                http_status=page.status_code,
                response_time_ms=page.elapsed_ms,
                reason=CheckReason.NOT_FOUND,
                error_kind="parse_error",
                error_message=str(exc),
            )
        if not match.found:
            return Observation(
                match=match,
                http_status=page.status_code,
                response_time_ms=page.elapsed_ms,
                reason=CheckReason.NOT_FOUND,
                error_message=NOT_FOUND_MESSAGE,
            )
        return Observation(
            match=match,
            http_status=page.status_code,
            response_time_ms=page.elapsed_ms,
        )

    def _validate(self, backlink: Backlink) -> None:
        urls.ensure_valid(backlink.source_url, field="source_url")
        urls.ensure_valid(backlink.target_url, field="target_url")

    def _record(
        self, backlink: Backlink, observation: Observation, now: datetime, mode: CheckMode
    ) -> CheckLog:
        details: dict[str, Any] = {
            "mode": mode.value,
            "link_found": observation.found,
            "expected_type": backlink.link_type.value,
            "detected_type": observation.match.link_type.value,
            "reason": observation.reason.value if observation.reason else None,
            "error_kind": observation.error_kind,
        }
        if observation.match.href:
            details["href"] = observation.match.href
        log = CheckLog(
            backlink_id=backlink.id,
            checked_at=now,
            check_status=CheckStatus.SUCCESS if observation.found else CheckStatus.FAILED,
            http_status_code=observation.http_status,
            response_time_ms=observation.response_time_ms,
            link_type_detected=observation.match.link_type,
            error_message=observation.error_message,
            check_details=details,
        )
        return self._repository.append(log)

    def _uptime(self, backlink: Backlink, now: datetime) -> float:
        logs = self._repository.recent(
            backlink.id, since=self._window.since(now), limit=self._window.max_records
        )
        return compute_uptime(logs)

    def _delivery_due(
        self, backlink: Backlink, alert_interval: timedelta | None, now: datetime
    ) -> bool:
        if alert_interval is None or backlink.last_alert_sent_at is None:
            return True
        return now - backlink.last_alert_sent_at >= alert_interval

    def _event(
        self, backlink: Backlink, kind: AlertKind, now: datetime, details: dict[str, Any]
    ) -> AlertEvent:
        return AlertEvent(
            backlink_id=backlink.id,
            user_id=backlink.user_id,
            source_url=backlink.source_url,
            target_url=backlink.target_url,
            kind=kind,
            detected_at=now,
            details=details,
        )

    async def _dispatch(self, event: AlertEvent) -> None:
        try:
            await self._notifier.notify(event)
        except Exception:
            logger.exception(
                "backlinks.alert.notify_failed",
                extra={"backlink_id": str(event.backlink_id), "kind": event.kind.value},
            )
            metrics.increment("alerts.delivery_failed", tags={"kind": event.kind.value})



def _interval_for(interval: AlertInterval | None, kind: AlertKind) -> timedelta | None:
    if isinstance(interval, Mapping):
        return interval.get(kind)
    return interval

_STATE_MACHINE_INSTANCE: BacklinkStateMachine | None = None


def get_state_machine() -> BacklinkStateMachine:
    """Singleton accessor used by API routes and the batch runner."""
    global _STATE_MACHINE_INSTANCE  # noqa: PLW0603
    if _STATE_MACHINE_INSTANCE is None:
        _STATE_MACHINE_INSTANCE = BacklinkStateMachine(
            repository=get_backlink_repository(),
            fetcher=PageFetcher(),
            notifier=build_alert_notifier(),
        )
    return _STATE_MACHINE_INSTANCE
