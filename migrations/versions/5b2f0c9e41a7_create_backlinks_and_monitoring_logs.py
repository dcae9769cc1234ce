"""Create backlinks and monitoring_logs tables.

``ix_backlinks_monitoring_due`` serves the batch claim query
(`WHERE is_verified ORDER BY last_checked_at NULLS FIRST LIMIT ?`) and
``ix_monitoring_logs_backlink_checked`` the 30-day uptime window
(`WHERE backlink_id = ? AND checked_at >= ? ORDER BY checked_at DESC LIMIT 100`).
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "5b2f0c9e41a7"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

UTC_NOW = sa.text("timezone('utc', now())")


def upgrade() -> None:
    op.create_table(
        "backlinks",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("pitch_id", sa.String(length=255), nullable=True),
        sa.Column("source_url", sa.String(length=2048), nullable=False),
        sa.Column("target_url", sa.String(length=2048), nullable=False),
        sa.Column("anchor_text", sa.Text(), nullable=True),
        sa.Column("link_type", sa.String(length=16), nullable=False, server_default="dofollow"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "verification_status", sa.String(length=16), nullable=False, server_default="unverified"
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_reciprocal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uptime_percentage", sa.Numeric(5, 2), nullable=False, server_default="100.00"),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_alert_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=UTC_NOW),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=UTC_NOW,
            server_onupdate=UTC_NOW,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_backlinks"),
        sa.UniqueConstraint("source_url", "target_url", name="uq_backlinks_source_target"),
        sa.CheckConstraint(
            "uptime_percentage >= 0 AND uptime_percentage <= 100",
            name="ck_backlinks_uptime_range",
        ),
    )
    op.create_index("ix_backlinks_user_id", "backlinks", ["user_id"], unique=False)
    op.create_index(
        "ix_backlinks_monitoring_due",
        "backlinks",
        ["is_verified", "last_checked_at"],
        unique=False,
    )

    op.create_table(
        "monitoring_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("backlink_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False, server_default=UTC_NOW),
        sa.Column("check_status", sa.String(length=16), nullable=False),
        sa.Column("http_status_code", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("link_type_detected", sa.String(length=16), nullable=False, server_default="none"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "check_details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_monitoring_logs"),
        sa.ForeignKeyConstraint(
            ["backlink_id"],
            ["backlinks.id"],
            name="fk_monitoring_logs_backlink_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_monitoring_logs_backlink_checked",
        "monitoring_logs",
        ["backlink_id", "checked_at"],
        unique=False,
    )
    logger.info("backlinks.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_monitoring_logs_backlink_checked", table_name="monitoring_logs")
    op.drop_table("monitoring_logs")
    op.drop_index("ix_backlinks_monitoring_due", table_name="backlinks")
    op.drop_index("ix_backlinks_user_id", table_name="backlinks")
    op.drop_table("backlinks")
