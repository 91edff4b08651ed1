"""Behavioral baseline Pydantic v2 schemas.

Baseline payloads are versioned: every stored JSON document carries a
``schemaVersion``. Documents written before versioning have none and are
read as version 1.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, model_validator

from clinic_security.schemas.common import CamelModel

BASELINE_SCHEMA_VERSION = 1

BaselineType = Literal["location", "time", "access_pattern"]


class _VersionedPayload(CamelModel):
    schema_version: int = Field(default=BASELINE_SCHEMA_VERSION, ge=1)
    message: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_version(cls, data: Any) -> Any:
        if isinstance(data, dict) and "schemaVersion" not in data and "schema_version" not in data:
            data = {**data, "schemaVersion": 1}
        return data

    def to_json(self) -> dict[str, Any]:
        """Serialize for storage with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class LocationEntry(CamelModel):
    ip: str
    location: str | None = None
    frequency: int


class LocationBaseline(_VersionedPayload):
    """Top source IPs of a user's logins."""

    common_locations: list[LocationEntry] = Field(default_factory=list)
    total_logins: int = 0
    unique_locations: int = 0


class HourCount(CamelModel):
    hour: int = Field(ge=0, le=23)
    frequency: int


class TimeBaseline(_VersionedPayload):
    """Hour-of-day distribution of a user's logins (UTC)."""

    common_hours: list[int] = Field(default_factory=list)
    average_hour: int | None = None
    hour_distribution: list[HourCount] = Field(default_factory=list)
    total_logins: int = 0


class ActionCount(CamelModel):
    action: str
    frequency: int


class AccessPatternBaseline(_VersionedPayload):
    """Frequency of audit action codes for a user."""

    common_actions: list[ActionCount] = Field(default_factory=list)
    total_actions: int = 0
    unique_actions: int = 0


BaselinePayload = LocationBaseline | TimeBaseline | AccessPatternBaseline

_PAYLOAD_MODELS: dict[str, type[_VersionedPayload]] = {
    "location": LocationBaseline,
    "time": TimeBaseline,
    "access_pattern": AccessPatternBaseline,
}


def parse_baseline_payload(baseline_type: str, data: dict[str, Any]) -> BaselinePayload:
    """Load a stored payload into its typed model, upgrading older versions.

    Raises:
        KeyError: If the baseline type is unknown.
        pydantic.ValidationError: If the payload does not match its shape.
    """
    model = _PAYLOAD_MODELS[baseline_type]
    return model.model_validate(data)  # type: ignore[return-value]


class BaselineResponse(CamelModel):
    """Stored baseline row."""

    id: int
    user_id: int
    baseline_type: str
    baseline_data: dict[str, Any]
    calculated_at: datetime
    last_updated: datetime


class BaselineListResponse(CamelModel):
    success: bool = True
    user_id: int
    baselines: list[BaselineResponse]


class BaselineCalculateRequest(CamelModel):
    """Request to (re)compute one baseline for one user, by id or email."""

    user_id: int | str | None = None
    email: str | None = None
    baseline_type: str


class BaselineCalculateResponse(CamelModel):
    success: bool = True
    message: str
    baseline: BaselineResponse


class RecalculationError(CamelModel):
    user_id: int
    email: str | None = None
    baseline_type: str
    error: str


class RecalculationResult(CamelModel):
    """Outcome of a sweep over every active user."""

    success: bool
    total_users: int = 0
    success_count: int = 0
    error_count: int = 0
    errors: list[RecalculationError] = Field(default_factory=list)
    error: str | None = None
