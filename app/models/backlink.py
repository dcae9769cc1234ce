"""Domain models for backlinks and their check history."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, confloat, conint


class LinkType(str, Enum):
    DOFOLLOW = "dofollow"
    NOFOLLOW = "nofollow"


class DetectedLinkType(str, Enum):
    DOFOLLOW = "dofollow"
    NOFOLLOW = "nofollow"
    NONE = "none"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    FAILED = "failed"


class CheckStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Backlink(BaseModel):
    """Claimed link from ``source_url`` to ``target_url`` owned by a user."""

    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    pitch_id: str | None = None
    source_url: str
    target_url: str
    anchor_text: str | None = None
    link_type: LinkType = LinkType.DOFOLLOW
    is_verified: bool = False
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    is_active: bool = False
    is_reciprocal: bool = False
    verification_attempts: conint(ge=0) = 0  # type: ignore[valid-type]
    failure_count: conint(ge=0) = 0  # type: ignore[valid-type]
    uptime_percentage: confloat(ge=0, le=100) = 100.0  # type: ignore[valid-type]
    last_checked_at: datetime | None = None
    last_verified_at: datetime | None = None
    last_failed_at: datetime | None = None
    last_alert_sent_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = None


class CheckLog(BaseModel):
    """Immutable outcome of a single fetch attempt against a backlink."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    backlink_id: UUID
    checked_at: datetime = Field(default_factory=_utcnow)
    check_status: CheckStatus
    http_status_code: int | None = None
    response_time_ms: conint(ge=0) = 0  # type: ignore[valid-type]
    link_type_detected: DetectedLinkType = DetectedLinkType.NONE
    error_message: str | None = None
    check_details: dict[str, Any] = Field(default_factory=dict)
