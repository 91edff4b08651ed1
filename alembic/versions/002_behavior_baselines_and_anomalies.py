"""Behavioral analytics: user_behavior_baselines, behavioral_anomalies, breach_incidents.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_behavior_baselines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("baseline_type", sa.String(30), nullable=False),
        sa.Column("baseline_data", JSONB, nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "baseline_type", name="uq_user_behavior_baselines_user_type"),
        sa.CheckConstraint(
            "baseline_type IN ('location', 'time', 'access_pattern')",
            name="ck_user_behavior_baselines_type",
        ),
    )
    op.create_index("ix_user_behavior_baselines_user_id", "user_behavior_baselines", ["user_id"])

    op.create_table(
        "behavioral_anomalies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("anomaly_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("details", JSONB, nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column("reviewed_by", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('new', 'reviewed', 'dismissed', 'escalated')",
            name="ck_behavioral_anomalies_status",
        ),
        sa.CheckConstraint("severity IN ('low', 'medium', 'high')", name="ck_behavioral_anomalies_severity"),
    )
    op.create_index("ix_behavioral_anomalies_user_id", "behavioral_anomalies", ["user_id"])
    op.create_index("ix_behavioral_anomalies_anomaly_type", "behavioral_anomalies", ["anomaly_type"])
    op.create_index("ix_behavioral_anomalies_severity", "behavioral_anomalies", ["severity"])
    op.create_index("ix_behavioral_anomalies_status_detected", "behavioral_anomalies", ["status", "detected_at"])

    op.create_table(
        "breach_incidents",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "anomaly_id",
            sa.Integer,
            sa.ForeignKey("behavioral_anomalies.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("incident_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("breach_incidents")
    op.drop_table("behavioral_anomalies")
    op.drop_table("user_behavior_baselines")
