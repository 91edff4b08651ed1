"""Audit log Pydantic v2 schemas: records, integrity reports, immutability status."""

from datetime import datetime
from typing import Any

from pydantic import Field

from clinic_security.schemas.common import CamelModel, PaginationMeta


class AuditLogResponse(CamelModel):
    """A single audit record as exposed over the API."""

    id: int
    timestamp: datetime
    user_id: int | None = None
    user_email: str | None = None
    user_role: str | None = None
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_method: str | None = None
    request_path: str | None = None
    status: str
    error_code: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="event_metadata")
    previous_hash: str | None = None


class PaginatedAuditLogResponse(CamelModel):
    """Page of audit records."""

    success: bool = True
    items: list[AuditLogResponse]
    pagination: PaginationMeta


class IntegrityReport(CamelModel):
    """Result of re-deriving the audit hash chain."""

    is_valid: bool
    total_logs: int = 0
    verified_logs: int = 0
    tampered_logs: list[dict[str, Any]] = Field(default_factory=list)
    message: str
    error: str | None = None


class ImmutabilityStatus(CamelModel):
    """Catalog view of the audit log immutability guards."""

    delete_protection: str
    update_protection: str
    is_fully_protected: bool
    triggers: list[dict[str, Any]] = Field(default_factory=list)
    message: str
    error: str | None = None


class IntegrityResponse(CamelModel):
    success: bool = True
    data: IntegrityReport


class ImmutabilityResponse(CamelModel):
    success: bool = True
    data: ImmutabilityStatus
