"""Owner-scoped backlink endpoints: CRUD plus on-demand verify/monitor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Literal, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.core.sessions import SessionContext, require_session
from app.models.backlink import Backlink, DetectedLinkType, LinkType, VerificationStatus
from app.services.backlinks import urls
from app.services.backlinks.alerts import AlertKind, alert_intervals_for_tier
from app.services.backlinks.errors import BacklinkError
from app.services.backlinks.repositories import BacklinkStore, get_backlink_repository
from app.services.backlinks.state_machine import (
    BacklinkStateMachine,
    CheckReason,
    MonitorOutcome,
    VerifyOutcome,
    get_state_machine,
)

router = APIRouter()
logger = logging.getLogger(__name__)

T = TypeVar("T")

VERIFIED_MESSAGE = "Backlink verified successfully!"
NOT_FOUND_MESSAGE = (
    "Link not found on the source page. Please make sure the link is present and try again."
)
UNREACHABLE_MESSAGE = "Could not reach the source page. Please check the URL and try again."
NON_NULLABLE_UPDATE_FIELDS = ("source_url", "target_url", "link_type", "is_reciprocal")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateBacklinkRequest(BaseModel):
    """Payload for registering a new backlink."""

    source_url: str = Field(..., min_length=1, max_length=2048)
    target_url: str = Field(..., min_length=1, max_length=2048)
    anchor_text: str | None = None
    link_type: LinkType = LinkType.DOFOLLOW
    pitch_id: str | None = None
    is_reciprocal: bool = False
    expires_at: datetime | None = None


class UpdateBacklinkRequest(BaseModel):
    """Partial update; changing either URL resets verification.

    An explicit ``null`` clears ``anchor_text``, ``pitch_id`` or ``expires_at``
    and is ignored for every other field.
    """

    source_url: str | None = Field(default=None, min_length=1, max_length=2048)
    target_url: str | None = Field(default=None, min_length=1, max_length=2048)
    anchor_text: str | None = None
    link_type: LinkType | None = None
    pitch_id: str | None = None
    is_reciprocal: bool | None = None
    expires_at: datetime | None = None


class VerifyResponse(_CamelModel):
    backlink: Backlink
    verified: bool
    link_type: DetectedLinkType = Field(alias="linkType")
    anchor_text: str | None = Field(default=None, alias="anchorText")
    reason: CheckReason | None = None
    message: str


class MonitoringSnapshot(_CamelModel):
    status: Literal["active", "inactive", "failed"]
    link_type: DetectedLinkType = Field(alias="linkType")
    response_time: int = Field(alias="responseTime")
    http_status: int | None = Field(default=None, alias="httpStatus")
    uptime_percentage: float = Field(alias="uptimePercentage")
    reason: CheckReason | None = None


class MonitorResponse(_CamelModel):
    backlink: Backlink
    monitoring: MonitoringSnapshot
    alerts: list[AlertKind] = Field(default_factory=list)
    message: str


class DeleteResponse(BaseModel):
    success: bool
    id: UUID


@router.get("/backlinks", response_model=list[Backlink])
async def list_backlinks(
    pitch_id: str | None = Query(None, description="Only backlinks attached to this pitch."),
    status_filter: Literal["active", "inactive", "all"] = Query("all", alias="status"),
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
) -> list[Backlink]:
    """List the caller's backlinks, newest first."""
    active = None if status_filter == "all" else status_filter == "active"
    return _run(lambda: repository.list_for_user(session.user_id, pitch_id=pitch_id, active=active))


@router.post("/backlinks", response_model=Backlink, status_code=status.HTTP_201_CREATED)
async def create_backlink(
    payload: CreateBacklinkRequest,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
) -> Backlink:
    """Register a backlink; it starts unverified and inactive."""
    source_url = _validated(payload.source_url, "source_url")
    target_url = _validated(payload.target_url, "target_url")
    backlink = Backlink(
        user_id=session.user_id,
        pitch_id=payload.pitch_id,
        source_url=source_url,
        target_url=target_url,
        anchor_text=payload.anchor_text,
        link_type=payload.link_type,
        is_reciprocal=payload.is_reciprocal,
        expires_at=payload.expires_at,
    )
    return _run(lambda: repository.create(backlink))


@router.get("/backlinks/{backlink_id}", response_model=Backlink)
async def get_backlink(
    backlink_id: UUID,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
) -> Backlink:
    return _owned(repository, backlink_id, session)


@router.put("/backlinks/{backlink_id}", response_model=Backlink)
async def update_backlink(
    backlink_id: UUID,
    payload: UpdateBacklinkRequest,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
) -> Backlink:
    backlink = _owned(repository, backlink_id, session)
    changes = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_UPDATE_FIELDS:
        if field in changes and changes[field] is None:
            del changes[field]
    urls_changed = False
    for field in ("source_url", "target_url"):
        if field not in changes:
            continue
        changes[field] = _validated(changes[field], field)
        urls_changed = urls_changed or changes[field] != getattr(backlink, field)
    for key, value in changes.items():
        setattr(backlink, key, value)
    if urls_changed:
        backlink.is_verified = False
        backlink.verification_status = VerificationStatus.UNVERIFIED
        backlink.is_active = False
        backlink.verification_attempts = 0
        logger.info("backlinks.api.verification_reset", extra={"backlink_id": str(backlink_id)})
    return _run(lambda: repository.save(backlink))


@router.delete("/backlinks/{backlink_id}", response_model=DeleteResponse)
async def delete_backlink(
    backlink_id: UUID,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
) -> DeleteResponse:
    _owned(repository, backlink_id, session)
    deleted = _run(lambda: repository.delete(backlink_id))
    if not deleted:
        raise HTTPException(status_code=404, detail="Backlink not found")
    return DeleteResponse(success=True, id=backlink_id)


@router.post("/backlinks/{backlink_id}/verify", response_model=VerifyResponse)
async def verify_backlink(
    backlink_id: UUID,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
    machine: BacklinkStateMachine = Depends(get_state_machine),
) -> VerifyResponse:
    """Check the source page once; a missing link is a 200 with ``verified: false``."""
    backlink = _owned(repository, backlink_id, session)
    try:
        outcome = await machine.verify(backlink)
    except BacklinkError as exc:
        logger.error(
            "backlinks.api_error",
            extra={"backlink_id": str(backlink_id), "code": exc.code, "operation": "verify"},
        )
        raise HTTPException(status_code=map_error_code(exc.code), detail=str(exc)) from exc
    return VerifyResponse(
        backlink=outcome.backlink,
        verified=outcome.verified,
        link_type=outcome.link_type,
        anchor_text=outcome.anchor_text,
        reason=outcome.reason,
        message=_verify_message(outcome),
    )


@router.post("/backlinks/{backlink_id}/monitor", response_model=MonitorResponse)
async def monitor_backlink(
    backlink_id: UUID,
    session: SessionContext = Depends(require_session),
    repository: BacklinkStore = Depends(get_backlink_repository),
    machine: BacklinkStateMachine = Depends(get_state_machine),
) -> MonitorResponse:
    """Re-check the source page; alert delivery is throttled by the caller's plan."""
    backlink = _owned(repository, backlink_id, session)
    try:
        outcome = await machine.monitor(
            backlink, alert_interval=alert_intervals_for_tier(session.plan_id)
        )
    except BacklinkError as exc:
        logger.error(
            "backlinks.api_error",
            extra={"backlink_id": str(backlink_id), "code": exc.code, "operation": "monitor"},
        )
        raise HTTPException(status_code=map_error_code(exc.code), detail=str(exc)) from exc
    return MonitorResponse(
        backlink=outcome.backlink,
        monitoring=MonitoringSnapshot(
            status=_monitoring_status(outcome),
            link_type=outcome.link_type,
            response_time=outcome.response_time_ms,
            http_status=outcome.http_status,
            uptime_percentage=outcome.uptime_percentage,
            reason=outcome.reason,
        ),
        alerts=[event.kind for event in outcome.alerts],
        message=_monitor_message(outcome),
    )


def _owned(repository: BacklinkStore, backlink_id: UUID, session: SessionContext) -> Backlink:
    backlink = _run(lambda: repository.get_owned(backlink_id, session.user_id))
    if backlink is None:
        raise HTTPException(status_code=404, detail="Backlink not found")
    return backlink


def _validated(url: str, field: str) -> str:
    try:
        return urls.ensure_valid(url, field=field)
    except BacklinkError as exc:
        raise HTTPException(status_code=map_error_code(exc.code), detail=str(exc)) from exc


def _run(operation: Callable[[], T]) -> T:
    try:
        return operation()
    except BacklinkError as exc:
        logger.error("backlinks.api_error", extra={"code": exc.code})
        raise HTTPException(status_code=map_error_code(exc.code), detail=str(exc)) from exc


def _verify_message(outcome: VerifyOutcome) -> str:
    if outcome.verified:
        return VERIFIED_MESSAGE
    if outcome.reason == CheckReason.UNREACHABLE:
        detail = f" ({outcome.error_message})" if outcome.error_message else ""
        return f"Could not reach the source page{detail}. Please check the URL and try again."
    return NOT_FOUND_MESSAGE


def _monitoring_status(outcome: MonitorOutcome) -> str:
    if outcome.found:
        return "active"
    if outcome.reason == CheckReason.UNREACHABLE:
        return "failed"
    return "inactive"


def _monitor_message(outcome: MonitorOutcome) -> str:
    if outcome.found:
        return f"Backlink is active ({outcome.link_type.value})."
    if outcome.reason == CheckReason.UNREACHABLE:
        return UNREACHABLE_MESSAGE
    return "Backlink is inactive: link not found on the source page."


def map_error_code(code: str) -> int:
    if code == "400_INVALID_URL":
        return status.HTTP_400_BAD_REQUEST
    if code == "404_BACKLINK_NOT_FOUND":
        return status.HTTP_404_NOT_FOUND
    if code == "409_BACKLINK_EXISTS":
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR
