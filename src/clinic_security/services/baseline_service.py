"""Behavioral baseline service.

Aggregates a trailing window of a user's activity into three profiles
(location, time of day, access pattern) and upserts them one row per
(user, baseline type). ``calculated_at`` records when a profile was first
computed and survives recalculation; ``last_updated`` moves every time.
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_security.core.config import Settings
from clinic_security.core.database import dialect_name
from clinic_security.core.exceptions import ConflictError, InvalidBaselineTypeError
from clinic_security.lib.geolocation import BaseGeolocator, batch_lookup_locations
from clinic_security.models.audit_log import AuditLog
from clinic_security.models.behavior_baseline import BASELINE_TYPES, BehaviorBaseline
from clinic_security.models.login_history import UserLoginHistory
from clinic_security.models.user import User
from clinic_security.schemas.baseline import (
    AccessPatternBaseline,
    ActionCount,
    BaselinePayload,
    HourCount,
    LocationBaseline,
    LocationEntry,
    TimeBaseline,
)
from clinic_security.services.identity_service import UserById, UserRef, resolve_user_id

MAX_COMMON_LOCATIONS = 10
MAX_COMMON_HOURS = 3

NO_LOGIN_HISTORY_MESSAGE = (
    "No login history found in the last {days} days. "
    "Baseline will be calculated once the user has login activity."
)
NO_ACCESS_HISTORY_MESSAGE = (
    "No access activity found in the last {days} days. "
    "Baseline will be calculated once the user has activity."
)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


async def _location_baseline(
    session: AsyncSession,
    user_id: int,
    since: datetime,
    window_days: int,
    geolocator: BaseGeolocator | None,
) -> LocationBaseline:
    login_count = func.count(UserLoginHistory.id).label("login_count")
    result = await session.execute(
        select(UserLoginHistory.ip_address, login_count)
        .where(UserLoginHistory.user_id == user_id, UserLoginHistory.login_timestamp > since)
        .group_by(UserLoginHistory.ip_address)
        .order_by(login_count.desc(), UserLoginHistory.ip_address)
        .limit(MAX_COMMON_LOCATIONS)
    )
    rows = [(ip or "unknown", int(count)) for ip, count in result.all()]

    locations: dict[str, str | None] = {}
    lookup_ips = [ip for ip, _ in rows if ip != "unknown"]
    if geolocator is not None and lookup_ips:
        try:
            locations = await batch_lookup_locations(geolocator, lookup_ips)
        except Exception:
            # Names are enrichment only; keep the IPs.
            logger.exception("Error fetching geolocation data")

    entries = [LocationEntry(ip=ip, location=locations.get(ip), frequency=count) for ip, count in rows]
    total = sum(entry.frequency for entry in entries)
    return LocationBaseline(
        common_locations=entries,
        total_logins=total,
        unique_locations=len(entries),
        message=NO_LOGIN_HISTORY_MESSAGE.format(days=window_days) if total == 0 else None,
    )


async def _time_baseline(session: AsyncSession, user_id: int, since: datetime, window_days: int) -> TimeBaseline:
    login_ts = UserLoginHistory.login_timestamp
    if dialect_name(session) == "postgresql":
        hour_expr = func.extract("hour", func.timezone("UTC", login_ts))
    else:
        hour_expr = func.extract("hour", login_ts)
    hour = hour_expr.label("hour")
    login_count = func.count(UserLoginHistory.id).label("login_count")
    result = await session.execute(
        select(hour, login_count)
        .where(UserLoginHistory.user_id == user_id, login_ts > since)
        .group_by(hour_expr)
        .order_by(login_count.desc(), hour_expr)
    )
    distribution = [HourCount(hour=int(h), frequency=int(count)) for h, count in result.all()]
    total = sum(item.frequency for item in distribution)
    average = (
        _round_half_up(sum(item.hour * item.frequency for item in distribution) / total) if total > 0 else None
    )
    return TimeBaseline(
        common_hours=[item.hour for item in distribution[:MAX_COMMON_HOURS]],
        average_hour=average,
        hour_distribution=distribution,
        total_logins=total,
        message=NO_LOGIN_HISTORY_MESSAGE.format(days=window_days) if total == 0 else None,
    )


async def _access_pattern_baseline(
    session: AsyncSession, user_id: int, since: datetime, window_days: int
) -> AccessPatternBaseline:
    action_count = func.count(AuditLog.id).label("action_count")
    result = await session.execute(
        select(AuditLog.action, action_count)
        .where(AuditLog.user_id == user_id, AuditLog.timestamp > since)
        .group_by(AuditLog.action)
        .order_by(action_count.desc(), AuditLog.action)
    )
    patterns = [ActionCount(action=action, frequency=int(count)) for action, count in result.all()]
    total = sum(item.frequency for item in patterns)
    return AccessPatternBaseline(
        common_actions=patterns,
        total_actions=total,
        unique_actions=len(patterns),
        message=NO_ACCESS_HISTORY_MESSAGE.format(days=window_days) if total == 0 else None,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


async def _upsert_baseline(
    session: AsyncSession, user_id: int, baseline_type: str, payload: BaselinePayload
) -> BehaviorBaseline:
    now = _utcnow()
    insert_fn = pg_insert if dialect_name(session) == "postgresql" else sqlite_insert
    stmt = insert_fn(BehaviorBaseline).values(
        user_id=user_id,
        baseline_type=baseline_type,
        baseline_data=payload.to_json(),
        calculated_at=now,
        last_updated=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[BehaviorBaseline.user_id, BehaviorBaseline.baseline_type],
        set_={
            "baseline_data": stmt.excluded.baseline_data,
            "last_updated": stmt.excluded.last_updated,
            "calculated_at": func.coalesce(BehaviorBaseline.calculated_at, stmt.excluded.calculated_at),
        },
    )
    await session.execute(stmt)
    await session.commit()

    result = await session.execute(
        select(BehaviorBaseline)
        .where(BehaviorBaseline.user_id == user_id, BehaviorBaseline.baseline_type == baseline_type)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def calculate_baseline(
    session: AsyncSession,
    user_ref: UserRef,
    baseline_type: str,
    *,
    settings: Settings,
    geolocator: BaseGeolocator | None = None,
) -> BehaviorBaseline:
    """Compute and store one baseline for one user.

    Args:
        session: The database session.
        user_ref: User to compute for, by id or email.
        baseline_type: ``location``, ``time`` or ``access_pattern``.
        settings: Application settings (window length, search hash key).
        geolocator: Optional provider used to name the top source IPs.

    Returns:
        The stored BehaviorBaseline row.

    Raises:
        InvalidBaselineTypeError: If the baseline type is unknown.
        UserNotFoundError: If the user cannot be resolved.
        ConflictError: If the user disappeared before the row was written.
        SQLAlchemyError: On any other storage failure.
    """
    if baseline_type not in BASELINE_TYPES:
        msg = "Invalid baselineType. Must be: location, time, or access_pattern"
        raise InvalidBaselineTypeError(msg)

    user_id = await resolve_user_id(session, user_ref, search_hash_key=settings.search_hash_key)
    window_days = settings.baseline_window_days
    since = _utcnow() - timedelta(days=window_days)

    try:
        payload: BaselinePayload
        if baseline_type == "location":
            payload = await _location_baseline(session, user_id, since, window_days, geolocator)
        elif baseline_type == "time":
            payload = await _time_baseline(session, user_id, since, window_days)
        else:
            payload = await _access_pattern_baseline(session, user_id, since, window_days)
        baseline = await _upsert_baseline(session, user_id, baseline_type, payload)
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"User {user_id} removed while calculating {baseline_type} baseline")
        msg = f"User {user_id} no longer exists"
        raise ConflictError(msg) from e
    except SQLAlchemyError:
        logger.exception(f"Error calculating {baseline_type} baseline for user {user_id}")
        await session.rollback()
        raise

    logger.debug(f"Calculated {baseline_type} baseline for user {user_id}")
    return baseline


async def get_user_baselines(session: AsyncSession, user_ref: UserRef, *, settings: Settings) -> list[BehaviorBaseline]:
    """Return every stored baseline of a user, ordered by type.

    Raises:
        UserNotFoundError: If the user cannot be resolved.
    """
    user_id = await resolve_user_id(session, user_ref, search_hash_key=settings.search_hash_key)
    result = await session.execute(
        select(BehaviorBaseline)
        .where(BehaviorBaseline.user_id == user_id)
        .order_by(BehaviorBaseline.baseline_type)
    )
    return list(result.scalars().all())


async def recalculate_all_baselines(
    session_factory: async_sessionmaker[AsyncSession],
    geolocator: BaseGeolocator | None,
    *,
    settings: Settings,
) -> dict[str, Any]:
    """Recompute all three baselines for every active user.

    Each (user, type) pair runs in its own session; a failure is recorded
    and the sweep moves on.

    Returns:
        ``{success, totalUsers, successCount, errorCount, errors}``. When the
        user list cannot be read, ``success`` is False and ``error`` is set.
    """
    logger.info("Starting baseline recalculation for all active users")
    try:
        async with session_factory() as session:
            result = await session.execute(
                select(User.id, User.email).where(User.is_active.is_(True)).order_by(User.id)
            )
            users = result.all()
    except Exception as e:
        logger.exception("Baseline recalculation failed to enumerate users")
        return {
            "success": False,
            "totalUsers": 0,
            "successCount": 0,
            "errorCount": 0,
            "errors": [],
            "error": str(e),
        }

    success_count = 0
    errors: list[dict[str, Any]] = []
    for user_id, email in users:
        for baseline_type in BASELINE_TYPES:
            try:
                async with session_factory() as session:
                    await calculate_baseline(
                        session, UserById(user_id), baseline_type, settings=settings, geolocator=geolocator
                    )
                success_count += 1
            except Exception as e:
                logger.error(f"Failed to calculate {baseline_type} baseline for user {user_id}: {e}")
                errors.append({"userId": user_id, "email": email, "baselineType": baseline_type, "error": str(e)})

    logger.info(
        f"Baseline recalculation complete: {len(users)} users, {success_count} succeeded, {len(errors)} failed"
    )
    return {
        "success": True,
        "totalUsers": len(users),
        "successCount": success_count,
        "errorCount": len(errors),
        "errors": errors,
    }
