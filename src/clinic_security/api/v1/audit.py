"""Audit log API endpoints (admin only).

GET /audit/logs, GET /audit/integrity, GET /audit/immutability.
"""

import math
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.api.errors import error_response
from clinic_security.core.config import Settings, get_settings
from clinic_security.core.dependencies import build_audit_context, get_async_session, require_role
from clinic_security.models.user import User
from clinic_security.schemas.audit import (
    AuditLogResponse,
    ImmutabilityResponse,
    ImmutabilityStatus,
    IntegrityReport,
    IntegrityResponse,
    PaginatedAuditLogResponse,
)
from clinic_security.schemas.common import PaginationMeta
from clinic_security.services import audit_service
from clinic_security.services.audit_immutability import verify_immutability_status

audit_router = APIRouter(prefix="/audit", tags=["audit"])


@audit_router.get("/logs", response_model=PaginatedAuditLogResponse)
async def list_audit_logs(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    current_user: Annotated[User, Depends(require_role("admin"))],
    settings: Annotated[Settings, Depends(get_settings)],
    user_id: Annotated[int | None, Query(alias="userId")] = None,
    action: Annotated[str | None, Query()] = None,
    resource_type: Annotated[str | None, Query(alias="resourceType")] = None,
    log_status: Annotated[str | None, Query(alias="status")] = None,
    start_time: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_time: Annotated[datetime | None, Query(alias="endDate")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(alias="pageSize", ge=1, le=100)] = 20,
) -> PaginatedAuditLogResponse:
    """Query the audit trail, newest first."""
    logs, total = await audit_service.query_audit_logs(
        session,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        status=log_status,
        start_time=start_time,
        end_time=end_time,
        page=page,
        page_size=page_size,
    )
    response = PaginatedAuditLogResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        pagination=PaginationMeta(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total > 0 else 0,
        ),
    )
    await audit_service.log_action(
        session,
        build_audit_context(request, settings, current_user),
        "audit.logs_view",
        resource_type="audit_logs",
        metadata={"page": page, "pageSize": page_size, "resultCount": len(logs)},
    )
    return response


@audit_router.get("/integrity", response_model=IntegrityResponse)
async def check_integrity(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    current_user: Annotated[User, Depends(require_role("admin"))],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IntegrityResponse | JSONResponse:
    """Re-derive the audit hash chain and report tampered records."""
    report = await audit_service.verify_audit_chain(session)
    if "error" in report:
        return error_response(settings, 500, report["message"], RuntimeError(report["error"]))
    await audit_service.log_action(
        session,
        build_audit_context(request, settings, current_user),
        "audit.integrity_check",
        resource_type="audit_logs",
        status="success" if report["isValid"] else "failure",
        metadata={"totalLogs": report["totalLogs"], "tamperedCount": len(report["tamperedLogs"])},
    )
    return IntegrityResponse(data=IntegrityReport.model_validate(report))


@audit_router.get("/immutability", response_model=ImmutabilityResponse)
async def check_immutability(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    current_user: Annotated[User, Depends(require_role("admin"))],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ImmutabilityResponse | JSONResponse:
    """Report whether the storage-level audit guards are installed."""
    status_report = await verify_immutability_status(session)
    if "error" in status_report:
        return error_response(settings, 500, status_report["message"], RuntimeError(status_report["error"]))
    await audit_service.log_action(
        session,
        build_audit_context(request, settings, current_user),
        "audit.immutability_check",
        resource_type="audit_logs",
        metadata={"isFullyProtected": status_report["isFullyProtected"]},
    )
    return ImmutabilityResponse(data=ImmutabilityStatus.model_validate(status_report))
