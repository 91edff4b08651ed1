"""UserLoginHistory model: one row per successful login."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from clinic_security.models.base import Base, IntIdMixin


class UserLoginHistory(Base, IntIdMixin):
    """Successful login event, the raw input of location and time baselines."""

    __tablename__ = "user_login_history"
    __table_args__ = (Index("ix_user_login_history_user_ts", "user_id", "login_timestamp"),)

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    login_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
