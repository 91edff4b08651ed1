"""Behavioral anomaly Pydantic v2 schemas."""

from datetime import datetime
from typing import Any

from pydantic import Field

from clinic_security.schemas.common import CamelModel


class AnomalyResponse(CamelModel):
    """Anomaly finding joined with the owning user's name and email."""

    id: int
    user_id: int
    anomaly_type: str
    severity: str
    details: dict[str, Any] | None = None
    detected_at: datetime
    status: str
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    incident_id: int | None = None


class AnomalyListResponse(CamelModel):
    success: bool = True
    anomalies: list[AnomalyResponse]
    total: int
    limit: int
    offset: int


class AnomalyStatusUpdateRequest(CamelModel):
    status: str
    reviewed_by: int | str | None = None


class AnomalyUpdateResponse(CamelModel):
    success: bool = True
    message: str
    anomaly: AnomalyResponse


class AnomalyStatistics(CamelModel):
    """Counts of anomaly findings."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
    recent: int = 0


class AnomalyStatisticsResponse(CamelModel):
    success: bool = True
    statistics: AnomalyStatistics
