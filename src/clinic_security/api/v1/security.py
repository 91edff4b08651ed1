"""Security observability API endpoints (admin only).

Behavioral baselines, anomaly review, and anomaly statistics. Every read of
security data is itself written to the audit log.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_security.core.config import Settings, get_settings
from clinic_security.core.dependencies import (
    build_audit_context,
    get_async_session,
    get_geolocator,
    get_sessionmaker,
    require_role,
)
from clinic_security.core.exceptions import InvalidInputError
from clinic_security.lib.geolocation import BaseGeolocator
from clinic_security.models.user import User
from clinic_security.schemas.anomaly import (
    AnomalyListResponse,
    AnomalyResponse,
    AnomalyStatistics,
    AnomalyStatisticsResponse,
    AnomalyStatusUpdateRequest,
    AnomalyUpdateResponse,
)
from clinic_security.schemas.baseline import (
    BaselineCalculateRequest,
    BaselineCalculateResponse,
    BaselineListResponse,
    BaselineResponse,
    RecalculationResult,
)
from clinic_security.services import anomaly_service, baseline_service
from clinic_security.services.audit_service import log_action
from clinic_security.services.identity_service import UserById, parse_user_ref, resolve_user_id

security_router = APIRouter(prefix="/security", tags=["security"])

AdminUser = Annotated[User, Depends(require_role("admin"))]
DbSession = Annotated[AsyncSession, Depends(get_async_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def _user_reference(user_id: int | str | None, email: str | None) -> int | str:
    if user_id not in (None, ""):
        return user_id  # type: ignore[return-value]
    if email:
        return email
    msg = "userId or email is required"
    raise InvalidInputError(msg)


@security_router.get("/baselines", response_model=BaselineListResponse)
async def get_baselines(
    request: Request,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
    email: Annotated[str | None, Query()] = None,
) -> BaselineListResponse:
    """Get all stored baselines of a user, by id or email."""
    ref = parse_user_ref(_user_reference(user_id, email))
    resolved_id = await resolve_user_id(session, ref, search_hash_key=settings.search_hash_key)
    baselines = await baseline_service.get_user_baselines(session, UserById(resolved_id), settings=settings)
    response = BaselineListResponse(
        user_id=resolved_id,
        baselines=[BaselineResponse.model_validate(b) for b in baselines],
    )
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.baselines_view",
        resource_type="user_behavior_baselines",
        resource_id=resolved_id,
    )
    return response


@security_router.post("/baselines/calculate", response_model=BaselineCalculateResponse)
async def calculate_baseline(
    request: Request,
    body: BaselineCalculateRequest,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
    geolocator: Annotated[BaseGeolocator | None, Depends(get_geolocator)],
) -> BaselineCalculateResponse:
    """Compute one baseline for one user now."""
    ref = parse_user_ref(_user_reference(body.user_id, body.email))
    baseline = await baseline_service.calculate_baseline(
        session, ref, body.baseline_type, settings=settings, geolocator=geolocator
    )
    response = BaselineCalculateResponse(
        message=f"{body.baseline_type} baseline calculated",
        baseline=BaselineResponse.model_validate(baseline),
    )
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.baseline_calculate",
        resource_type="user_behavior_baselines",
        resource_id=baseline.user_id,
        metadata={"baselineType": body.baseline_type},
    )
    return response


@security_router.post("/baselines/recalculate", response_model=RecalculationResult)
async def recalculate_baselines(
    request: Request,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)],
    geolocator: Annotated[BaseGeolocator | None, Depends(get_geolocator)],
) -> RecalculationResult:
    """Recompute every baseline of every active user now."""
    logger.info(f"On-demand baseline recalculation requested by user {current_user.id}")
    result = await baseline_service.recalculate_all_baselines(session_factory, geolocator, settings=settings)
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.baselines_recalculate",
        resource_type="user_behavior_baselines",
        status="success" if result["success"] else "error",
        metadata={"successCount": result["successCount"], "errorCount": result["errorCount"]},
    )
    return RecalculationResult.model_validate(result)


@security_router.get("/anomalies", response_model=AnomalyListResponse)
async def list_anomalies(
    request: Request,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
    anomaly_status: Annotated[str | None, Query(alias="status")] = None,
    severity: Annotated[str | None, Query()] = None,
    user_id: Annotated[int | None, Query(alias="userId")] = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AnomalyListResponse:
    """List anomalies that have not been escalated into a breach incident."""
    rows, total = await anomaly_service.list_anomalies(
        session,
        status=anomaly_status,
        severity=severity,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.anomalies_view",
        resource_type="behavioral_anomalies",
        metadata={"status": anomaly_status, "severity": severity, "userId": user_id, "resultCount": len(rows)},
    )
    return AnomalyListResponse(
        anomalies=[AnomalyResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@security_router.get("/anomalies/notified", response_model=AnomalyListResponse)
async def list_notified_anomalies(
    request: Request,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
    severity: Annotated[str | None, Query()] = None,
    user_id: Annotated[int | None, Query(alias="userId")] = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AnomalyListResponse:
    """List anomalies that already have a breach incident."""
    rows, total = await anomaly_service.list_notified_anomalies(
        session,
        severity=severity,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.notified_anomalies_view",
        resource_type="behavioral_anomalies",
        metadata={"severity": severity, "userId": user_id, "resultCount": len(rows)},
    )
    return AnomalyListResponse(
        anomalies=[AnomalyResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@security_router.put("/anomalies/{anomaly_id}", response_model=AnomalyUpdateResponse)
async def update_anomaly(
    request: Request,
    anomaly_id: str,
    body: AnomalyStatusUpdateRequest,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
) -> AnomalyUpdateResponse:
    """Move an anomaly to a new review status. The reviewer defaults to the caller."""
    reviewed_by = body.reviewed_by if body.reviewed_by is not None else current_user.id
    anomaly = await anomaly_service.update_anomaly_status(session, anomaly_id, body.status, reviewed_by)
    response = AnomalyUpdateResponse(
        message=f"Anomaly status updated to {anomaly.status}",
        anomaly=AnomalyResponse.model_validate(anomaly),
    )
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.anomaly_update",
        resource_type="behavioral_anomalies",
        resource_id=anomaly.id,
        metadata={"status": anomaly.status},
    )
    return response


@security_router.get("/statistics", response_model=AnomalyStatisticsResponse)
async def get_statistics(
    request: Request,
    session: DbSession,
    current_user: AdminUser,
    settings: AppSettings,
) -> AnomalyStatisticsResponse:
    """Get anomaly counts by status, severity and type."""
    stats = await anomaly_service.get_anomaly_statistics(session)
    await log_action(
        session,
        build_audit_context(request, settings, current_user),
        "security.statistics_view",
        resource_type="behavioral_anomalies",
    )
    return AnomalyStatisticsResponse(statistics=AnomalyStatistics.model_validate(stats))
