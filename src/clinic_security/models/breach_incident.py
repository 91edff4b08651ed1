"""BreachIncident model: the incident-response record an anomaly may be escalated into."""

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clinic_security.models.base import Base, IntIdMixin, TimestampMixin


class BreachIncident(Base, IntIdMixin, TimestampMixin):
    """Breach incident, optionally linked one-to-one to the anomaly that raised it."""

    __tablename__ = "breach_incidents"

    anomaly_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("behavioral_anomalies.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    incident_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", server_default="open")
