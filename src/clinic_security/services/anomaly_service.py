"""Behavioral anomaly detection and lifecycle service.

Compares live events against a user's stored baselines, persists the
resulting findings, and drives their review lifecycle. Detection is
best-effort: it never raises into the login path that calls it.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.core.config import Settings
from clinic_security.core.exceptions import AnomalyNotFoundError, InvalidArgumentError, InvalidStatusError
from clinic_security.models.behavior_baseline import BehaviorBaseline
from clinic_security.models.behavioral_anomaly import ANOMALY_STATUSES, BehavioralAnomaly
from clinic_security.models.breach_incident import BreachIncident
from clinic_security.models.user import User
from clinic_security.schemas.baseline import (
    AccessPatternBaseline,
    LocationBaseline,
    TimeBaseline,
    parse_baseline_payload,
)

RECENT_WINDOW_DAYS = 7


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _coerce_int(value: int | str | None, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"Invalid {name}: {value!r}"
        raise InvalidArgumentError(msg)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        msg = f"Invalid {name}: {value!r}"
        raise InvalidArgumentError(msg) from e


def _check_location(
    baseline: LocationBaseline, ip_address: str, event_type: str | None, min_history: int
) -> dict[str, Any] | None:
    known_ips = [entry.ip for entry in baseline.common_locations]
    if ip_address in known_ips or baseline.total_logins <= min_history:
        return None
    return {
        "type": "unusual_location",
        "severity": "medium",
        "details": {"ipAddress": ip_address, "expectedLocations": known_ips, "eventType": event_type},
    }


def _check_time(
    baseline: TimeBaseline, timestamp: datetime, event_type: str | None, tolerance_hours: int
) -> dict[str, Any] | None:
    if not baseline.common_hours:
        return None
    event_hour = _as_utc(timestamp).hour
    if event_hour in baseline.common_hours:
        return None
    average = baseline.average_hour
    if average is not None:
        diff = abs(event_hour - average)
        if min(diff, 24 - diff) <= tolerance_hours:
            return None
    return {
        "type": "unusual_time",
        "severity": "low",
        "details": {
            "eventHour": event_hour,
            "expectedHours": list(baseline.common_hours),
            "averageHour": average,
            "eventType": event_type,
        },
    }


def _check_access(baseline: AccessPatternBaseline, event_type: str, min_history: int) -> dict[str, Any] | None:
    known_actions = [entry.action for entry in baseline.common_actions]
    if event_type in known_actions or baseline.total_actions <= min_history:
        return None
    return {
        "type": "unusual_access",
        "severity": "low",
        "details": {"action": event_type, "expectedActions": known_actions, "eventType": event_type},
    }


async def detect_anomalies(
    session: AsyncSession,
    user_id: int,
    *,
    settings: Settings,
    ip_address: str | None = None,
    timestamp: datetime | None = None,
    event_type: str | None = None,
) -> list[BehavioralAnomaly] | None:
    """Evaluate one event against the user's baselines and store any findings.

    Args:
        session: The database session.
        user_id: Canonical id of the acting user.
        settings: Application settings (detection thresholds).
        ip_address: Source address of the event.
        timestamp: When the event happened. Naive values are UTC.
        event_type: Action code of the event (e.g. ``auth.login``).

    Returns:
        The stored findings, or None when the user has no baselines, nothing
        deviates, or detection failed.
    """
    try:
        result = await session.execute(
            select(BehaviorBaseline.baseline_type, BehaviorBaseline.baseline_data).where(
                BehaviorBaseline.user_id == user_id
            )
        )
        rows = result.all()
        if not rows:
            return None
        baselines = {baseline_type: parse_baseline_payload(baseline_type, data) for baseline_type, data in rows}

        findings: list[dict[str, Any]] = []
        location = baselines.get("location")
        if ip_address and isinstance(location, LocationBaseline):
            finding = _check_location(location, ip_address, event_type, settings.anomaly_min_location_history)
            if finding:
                findings.append(finding)
        time_baseline = baselines.get("time")
        if timestamp is not None and isinstance(time_baseline, TimeBaseline):
            finding = _check_time(time_baseline, timestamp, event_type, settings.anomaly_time_tolerance_hours)
            if finding:
                findings.append(finding)
        access = baselines.get("access_pattern")
        if event_type and isinstance(access, AccessPatternBaseline):
            finding = _check_access(access, event_type, settings.anomaly_min_action_history)
            if finding:
                findings.append(finding)

        if not findings:
            return None

        detected_at = _as_utc(timestamp) if timestamp is not None else datetime.now(UTC)
        anomalies = [
            BehavioralAnomaly(
                user_id=user_id,
                anomaly_type=finding["type"],
                severity=finding["severity"],
                details=finding["details"],
                detected_at=detected_at,
                status="new",
            )
            for finding in findings
        ]
        session.add_all(anomalies)
        await session.commit()
        for anomaly in anomalies:
            await session.refresh(anomaly)
        logger.info(f"Detected {len(anomalies)} anomaly(ies) for user {user_id}")
        return anomalies
    except Exception:
        logger.exception(f"Error detecting anomalies for user {user_id}")
        await session.rollback()
        return None


def _apply_filters(
    query: Select,
    *,
    status: str | None,
    severity: str | None,
    user_id: int | None,
    start_date: datetime | None,
    end_date: datetime | None,
) -> Select:
    if status is not None:
        query = query.where(BehavioralAnomaly.status == status)
    if severity is not None:
        query = query.where(BehavioralAnomaly.severity == severity)
    if user_id is not None:
        query = query.where(BehavioralAnomaly.user_id == user_id)
    if start_date is not None:
        query = query.where(BehavioralAnomaly.detected_at >= start_date)
    if end_date is not None:
        query = query.where(BehavioralAnomaly.detected_at <= end_date)
    return query


def _row_to_dict(
    anomaly: BehavioralAnomaly,
    email: str | None,
    first_name: str | None,
    last_name: str | None,
    incident_id: int | None = None,
) -> dict[str, Any]:
    return {
        "id": anomaly.id,
        "user_id": anomaly.user_id,
        "anomaly_type": anomaly.anomaly_type,
        "severity": anomaly.severity,
        "details": anomaly.details,
        "detected_at": anomaly.detected_at,
        "status": anomaly.status,
        "reviewed_by": anomaly.reviewed_by,
        "reviewed_at": anomaly.reviewed_at,
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "incident_id": incident_id,
    }


async def list_anomalies(
    session: AsyncSession,
    *,
    status: str | None = None,
    severity: str | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """List anomalies that have not been escalated into a breach incident.

    Args:
        session: The database session.
        status: Filter by lifecycle status.
        severity: Filter by severity.
        user_id: Filter by user.
        start_date: Only findings detected at or after this time.
        end_date: Only findings detected at or before this time.
        limit: Maximum rows to return.
        offset: Rows to skip.

    Returns:
        Tuple of (anomaly rows joined with user name and email, total count).
    """
    filters = {
        "status": status,
        "severity": severity,
        "user_id": user_id,
        "start_date": start_date,
        "end_date": end_date,
    }
    query = (
        select(BehavioralAnomaly, User.email, User.first_name, User.last_name)
        .outerjoin(User, User.id == BehavioralAnomaly.user_id)
        .outerjoin(BreachIncident, BreachIncident.anomaly_id == BehavioralAnomaly.id)
        .where(BreachIncident.id.is_(None))
    )
    count_query = (
        select(func.count(BehavioralAnomaly.id))
        .select_from(BehavioralAnomaly)
        .outerjoin(BreachIncident, BreachIncident.anomaly_id == BehavioralAnomaly.id)
        .where(BreachIncident.id.is_(None))
    )
    query = _apply_filters(query, **filters)
    count_query = _apply_filters(count_query, **filters)

    try:
        total = (await session.execute(count_query)).scalar_one()
        result = await session.execute(
            query.order_by(BehavioralAnomaly.detected_at.desc(), BehavioralAnomaly.id.desc()).offset(offset).limit(limit)
        )
    except SQLAlchemyError:
        logger.exception("Error listing anomalies")
        raise
    return [_row_to_dict(*row) for row in result.all()], total


async def list_notified_anomalies(
    session: AsyncSession,
    *,
    severity: str | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """List anomalies already linked to a breach incident, with the incident id."""
    filters = {
        "status": None,
        "severity": severity,
        "user_id": user_id,
        "start_date": start_date,
        "end_date": end_date,
    }
    query = (
        select(BehavioralAnomaly, User.email, User.first_name, User.last_name, BreachIncident.id)
        .join(BreachIncident, BreachIncident.anomaly_id == BehavioralAnomaly.id)
        .outerjoin(User, User.id == BehavioralAnomaly.user_id)
    )
    count_query = (
        select(func.count(BehavioralAnomaly.id))
        .select_from(BehavioralAnomaly)
        .join(BreachIncident, BreachIncident.anomaly_id == BehavioralAnomaly.id)
    )
    query = _apply_filters(query, **filters)
    count_query = _apply_filters(count_query, **filters)

    try:
        total = (await session.execute(count_query)).scalar_one()
        result = await session.execute(
            query.order_by(BehavioralAnomaly.detected_at.desc(), BehavioralAnomaly.id.desc()).offset(offset).limit(limit)
        )
    except SQLAlchemyError:
        logger.exception("Error listing notified anomalies")
        raise
    return [_row_to_dict(*row) for row in result.all()], total


async def update_anomaly_status(
    session: AsyncSession,
    anomaly_id: int | str,
    status: str,
    reviewed_by: int | str | None = None,
) -> BehavioralAnomaly:
    """Move an anomaly through its review lifecycle.

    Any status may follow any other. ``reviewed_at`` is stamped for every
    status except ``new``, which leaves it untouched.

    Args:
        session: The database session.
        anomaly_id: Anomaly to update.
        status: ``new``, ``reviewed``, ``dismissed`` or ``escalated``.
        reviewed_by: Reviewing user id.

    Returns:
        The updated anomaly.

    Raises:
        InvalidStatusError: If the status is not a lifecycle state.
        InvalidArgumentError: If an id is not an integer.
        AnomalyNotFoundError: If no anomaly has the id.
    """
    if status not in ANOMALY_STATUSES:
        msg = "Invalid status. Must be: new, reviewed, dismissed, or escalated"
        raise InvalidStatusError(msg)
    anomaly_pk = _coerce_int(anomaly_id, "anomaly id")
    reviewer_id = _coerce_int(reviewed_by, "reviewer id")

    try:
        anomaly = await session.get(BehavioralAnomaly, anomaly_pk)
        if anomaly is None:
            msg = f"Anomaly {anomaly_pk} not found"
            raise AnomalyNotFoundError(msg)
        anomaly.status = status
        anomaly.reviewed_by = reviewer_id
        if status != "new":
            anomaly.reviewed_at = datetime.now(UTC)
        await session.commit()
        await session.refresh(anomaly)
    except SQLAlchemyError:
        logger.exception(f"Error updating anomaly {anomaly_pk}")
        await session.rollback()
        raise

    logger.info(f"Anomaly {anomaly_pk} marked {status}")
    return anomaly


async def _grouped_counts(session: AsyncSession, column: Any) -> dict[str, int]:
    result = await session.execute(select(column, func.count(BehavioralAnomaly.id)).group_by(column))
    return {key: int(count) for key, count in result.all()}


async def get_anomaly_statistics(session: AsyncSession) -> dict[str, Any]:
    """Count findings overall, by status, severity and type, and over the last 7 days."""
    try:
        total = (await session.execute(select(func.count(BehavioralAnomaly.id)))).scalar_one()
        since = datetime.now(UTC) - timedelta(days=RECENT_WINDOW_DAYS)
        recent = (
            await session.execute(
                select(func.count(BehavioralAnomaly.id)).where(BehavioralAnomaly.detected_at >= since)
            )
        ).scalar_one()
        return {
            "total": total,
            "by_status": await _grouped_counts(session, BehavioralAnomaly.status),
            "by_severity": await _grouped_counts(session, BehavioralAnomaly.severity),
            "by_type": await _grouped_counts(session, BehavioralAnomaly.anomaly_type),
            "recent": recent,
        }
    except SQLAlchemyError:
        logger.exception("Error fetching anomaly statistics")
        raise
