"""BehavioralAnomaly model: a deviation from a user's baseline awaiting review."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from clinic_security.models.base import Base, IntIdMixin, JSONType

ANOMALY_STATUSES = ("new", "reviewed", "dismissed", "escalated")
ANOMALY_SEVERITIES = ("low", "medium", "high")


class BehavioralAnomaly(Base, IntIdMixin):
    """Anomaly finding with a review lifecycle (new -> reviewed | dismissed | escalated)."""

    __tablename__ = "behavioral_anomalies"
    __table_args__ = (
        Index("ix_behavioral_anomalies_status_detected", "status", "detected_at"),
    )

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    anomaly_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new", server_default="new")
    reviewed_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
