"""BehaviorBaseline model: one aggregated profile per (user, baseline type)."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from clinic_security.models.base import Base, IntIdMixin, JSONType

BASELINE_TYPES = ("location", "time", "access_pattern")


class BehaviorBaseline(Base, IntIdMixin):
    """Rolling-window behavior profile. ``calculated_at`` is kept across recalculations."""

    __tablename__ = "user_behavior_baselines"
    __table_args__ = (UniqueConstraint("user_id", "baseline_type", name="uq_user_behavior_baselines_user_type"),)

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    baseline_type: Mapped[str] = mapped_column(String(30), nullable=False)
    baseline_data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
