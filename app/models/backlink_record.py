"""SQLModel mappings for persisted backlinks and monitoring logs."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.backlink import (
    Backlink,
    CheckLog,
    CheckStatus,
    DetectedLinkType,
    LinkType,
    VerificationStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


class BacklinkRecord(SQLModel, table=True):
    """ORM model for the ``backlinks`` table."""

    __tablename__ = "backlinks"
    __table_args__ = (
        sa.UniqueConstraint("source_url", "target_url", name="uq_backlinks_source_target"),
        sa.Index("ix_backlinks_user_id", "user_id"),
        sa.Index("ix_backlinks_monitoring_due", "is_verified", "last_checked_at"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    pitch_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    source_url: str = Field(sa_column=Column(String(length=2048), nullable=False))
    target_url: str = Field(sa_column=Column(String(length=2048), nullable=False))
    anchor_text: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    link_type: str = Field(
        default=LinkType.DOFOLLOW.value,
        sa_column=Column(String(length=16), nullable=False, server_default="dofollow"),
    )
    is_verified: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    verification_status: str = Field(
        default=VerificationStatus.UNVERIFIED.value,
        sa_column=Column(String(length=16), nullable=False, server_default="unverified"),
    )
    is_active: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    is_reciprocal: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    verification_attempts: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )
    failure_count: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )
    uptime_percentage: float = Field(
        default=100.0,
        sa_column=Column(Numeric(5, 2, asdecimal=False), nullable=False, server_default="100.00"),
    )
    last_checked_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_verified_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_failed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_alert_sent_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
            onupdate=UtcNow(),
        ),
    )

    @classmethod
    def from_backlink(cls, backlink: Backlink) -> BacklinkRecord:
        """Convert an in-memory Backlink into a persistence row."""
        return cls(**cls._column_values(backlink))

    def apply(self, backlink: Backlink) -> None:
        """Copy every mutable column from the domain object onto this row."""
        for key, value in self._column_values(backlink).items():
            if key in {"id", "created_at"}:
                continue
            setattr(self, key, value)

    def to_backlink(self) -> Backlink:
        """Hydrate a Backlink domain model from the stored row."""
        return Backlink(
            id=self.id,
            user_id=self.user_id,
            pitch_id=self.pitch_id,
            source_url=self.source_url,
            target_url=self.target_url,
            anchor_text=self.anchor_text,
            link_type=LinkType(self.link_type),
            is_verified=self.is_verified,
            verification_status=VerificationStatus(self.verification_status),
            is_active=self.is_active,
            is_reciprocal=self.is_reciprocal,
            verification_attempts=self.verification_attempts,
            failure_count=self.failure_count,
            uptime_percentage=float(self.uptime_percentage),
            last_checked_at=_as_utc(self.last_checked_at),
            last_verified_at=_as_utc(self.last_verified_at),
            last_failed_at=_as_utc(self.last_failed_at),
            last_alert_sent_at=_as_utc(self.last_alert_sent_at),
            expires_at=_as_utc(self.expires_at),
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )

    @staticmethod
    def _column_values(backlink: Backlink) -> dict[str, Any]:
        return {
            "id": backlink.id,
            "user_id": backlink.user_id,
            "pitch_id": backlink.pitch_id,
            "source_url": backlink.source_url,
            "target_url": backlink.target_url,
            "anchor_text": backlink.anchor_text,
            "link_type": backlink.link_type.value,
            "is_verified": backlink.is_verified,
            "verification_status": backlink.verification_status.value,
            "is_active": backlink.is_active,
            "is_reciprocal": backlink.is_reciprocal,
            "verification_attempts": backlink.verification_attempts,
            "failure_count": backlink.failure_count,
            "uptime_percentage": backlink.uptime_percentage,
            "last_checked_at": backlink.last_checked_at,
            "last_verified_at": backlink.last_verified_at,
            "last_failed_at": backlink.last_failed_at,
            "last_alert_sent_at": backlink.last_alert_sent_at,
            "expires_at": backlink.expires_at,
            "created_at": backlink.created_at,
            "updated_at": backlink.updated_at or backlink.created_at,
        }


class MonitoringLogRecord(SQLModel, table=True):
    """Append-only ``monitoring_logs`` row; never updated after insert."""

    __tablename__ = "monitoring_logs"
    __table_args__ = (
        sa.Index("ix_monitoring_logs_backlink_checked", "backlink_id", "checked_at"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    backlink_id: UUID = Field(
        sa_column=Column(
            Uuid(as_uuid=True),
            sa.ForeignKey("backlinks.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    checked_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    check_status: str = Field(sa_column=Column(String(length=16), nullable=False))
    http_status_code: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    response_time_ms: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )
    link_type_detected: str = Field(
        default=DetectedLinkType.NONE.value,
        sa_column=Column(String(length=16), nullable=False, server_default="none"),
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    check_details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )

    @classmethod
    def from_check_log(cls, log: CheckLog) -> MonitoringLogRecord:
        return cls(
            backlink_id=log.backlink_id,
            checked_at=log.checked_at,
            check_status=log.check_status.value,
            http_status_code=log.http_status_code,
            response_time_ms=log.response_time_ms,
            link_type_detected=log.link_type_detected.value,
            error_message=log.error_message,
            check_details=dict(log.check_details),
        )

    def to_check_log(self) -> CheckLog:
        return CheckLog(
            id=self.id,
            backlink_id=self.backlink_id,
            checked_at=_as_utc(self.checked_at),
            check_status=CheckStatus(self.check_status),
            http_status_code=self.http_status_code,
            response_time_ms=self.response_time_ms,
            link_type_detected=DetectedLinkType(self.link_type_detected),
            error_message=self.error_message,
            check_details=dict(self.check_details or {}),
        )
