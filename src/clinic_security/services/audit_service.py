"""Audit logging service.

Appends security-relevant events to the hash-chained audit trail, verifies
the chain, and queries recorded events. Writes never raise to the caller:
an audit failure is logged and reported as ``None`` so it cannot break the
request that triggered it.
"""

import asyncio
import weakref
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.core.database import dialect_name
from clinic_security.lib.hash_chain import compute_entry_hash, verify_chain
from clinic_security.models.audit_log import AuditLog

# Serializes chain extension within this process, one lock per event loop.
_chain_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()

# Cross-process chain lock key for pg_advisory_xact_lock ("AUDITLOG" in ASCII).
AUDIT_CHAIN_LOCK_KEY = 0x4155444954_4C4F47

_SENSITIVE_KEYS = frozenset({"password", "passwd", "pwd", "secret", "token", "otp"})


def _chain_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _chain_locks.get(loop)
    if lock is None:
        lock = _chain_locks[loop] = asyncio.Lock()
    return lock


@dataclass(frozen=True)
class AuditContext:
    """Who did it and from where, captured at the HTTP boundary."""

    user_id: int | None = None
    user_email: str | None = None
    user_role: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_method: str | None = None
    request_path: str | None = None
    endpoint: str | None = None


def strip_sensitive(data: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of a mapping without password-like keys, recursively."""
    if not data:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        lowered = str(key).lower()
        if lowered in _SENSITIVE_KEYS or "password" in lowered:
            continue
        cleaned[key] = strip_sensitive(value) if isinstance(value, dict) else value
    return cleaned


async def write_audit_event(
    session: AsyncSession,
    *,
    action: str,
    user_id: int | None = None,
    user_email: str | None = None,
    user_role: str | None = None,
    resource_type: str | None = None,
    resource_id: str | int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_method: str | None = None,
    request_path: str | None = None,
    status: str = "success",
    error_code: str | None = None,
    error_message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Append one record to the audit chain.

    The new record's ``previous_hash`` is the canonical hash of the newest
    existing record, or ``""`` when the chain is empty.

    Args:
        session: The database session. Committed on success, rolled back on failure.
        action: Dot-namespaced action code (e.g. ``auth.login``).
        user_id: Acting user, if authenticated.
        user_email: Acting user's email.
        user_role: Acting user's role.
        resource_type: Kind of resource touched.
        resource_id: Identifier of the resource touched.
        ip_address: Client address.
        user_agent: Client user agent.
        request_method: HTTP method.
        request_path: HTTP path.
        status: ``success``, ``failure`` or ``error``.
        error_code: Optional machine-readable error code.
        error_message: Optional error text.
        metadata: Extra context. Must not contain secrets.

    Returns:
        The stored AuditLog, or None if it could not be written.
    """
    async with _chain_lock():
        try:
            if dialect_name(session) == "postgresql":
                await session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": AUDIT_CHAIN_LOCK_KEY})

            result = await session.execute(select(AuditLog).order_by(AuditLog.id.desc()).limit(1))
            last = result.scalar_one_or_none()
            previous_hash = compute_entry_hash(last) if last is not None else ""

            record = AuditLog(
                timestamp=datetime.now(UTC),
                user_id=user_id,
                user_email=user_email,
                user_role=user_role,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                ip_address=ip_address,
                user_agent=user_agent,
                request_method=request_method,
                request_path=request_path,
                status=status,
                error_code=error_code,
                error_message=error_message,
                event_metadata=metadata,
                previous_hash=previous_hash,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record
        except Exception:
            logger.exception(f"Failed to write audit log for action {action}")
            await session.rollback()
            return None


def _context_fields(ctx: AuditContext) -> dict[str, Any]:
    return {
        "user_id": ctx.user_id,
        "user_email": ctx.user_email,
        "user_role": ctx.user_role,
        "ip_address": ctx.ip_address,
        "user_agent": ctx.user_agent,
        "request_method": ctx.request_method,
        "request_path": ctx.request_path,
    }


async def log_action(
    session: AsyncSession,
    ctx: AuditContext,
    action: str,
    *,
    resource_type: str | None = None,
    resource_id: str | int | None = None,
    status: str = "success",
    metadata: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Record a generic action performed by the request's actor."""
    return await write_audit_event(
        session,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        status=status,
        metadata={"endpoint": ctx.endpoint or ctx.request_path, **strip_sensitive(metadata)},
        **_context_fields(ctx),
    )


async def log_auth_event(
    session: AsyncSession,
    ctx: AuditContext,
    action: str,
    status: str,
    *,
    error_message: str | None = None,
    body: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Record an authentication event (``auth.<action>``).

    For logins only the email is kept from the request body; other body
    fields are passed through with password-like keys removed.
    """
    metadata: dict[str, Any] = {"endpoint": ctx.endpoint or ctx.request_path}
    cleaned = strip_sensitive(body)
    if action == "login":
        if cleaned.get("email") is not None:
            metadata["email"] = cleaned["email"]
    else:
        metadata.update(cleaned)
    return await write_audit_event(
        session,
        action=f"auth.{action}",
        resource_type="authentication",
        status=status,
        error_message=error_message,
        metadata=metadata,
        **_context_fields(ctx),
    )


async def log_phi_access(
    session: AsyncSession,
    ctx: AuditContext,
    resource_type: str,
    resource_id: str | int | None,
    action: str,
) -> AuditLog | None:
    """Record access to protected health information (``phi.<action>``)."""
    return await write_audit_event(
        session,
        action=f"phi.{action}",
        resource_type=resource_type,
        resource_id=resource_id,
        status="success",
        metadata={"endpoint": ctx.endpoint or ctx.request_path},
        **_context_fields(ctx),
    )


async def log_privilege_change(
    session: AsyncSession,
    ctx: AuditContext,
    target_user_id: int,
    changes: dict[str, Any],
) -> AuditLog | None:
    """Record a change to another user's role or permissions."""
    return await write_audit_event(
        session,
        action="privilege.change",
        resource_type="user",
        resource_id=target_user_id,
        status="success",
        metadata={"changes": strip_sensitive(changes), "endpoint": ctx.endpoint or ctx.request_path},
        **_context_fields(ctx),
    )


async def log_failed_access(
    session: AsyncSession,
    ctx: AuditContext,
    reason: str,
    *,
    email: str | None = None,
) -> AuditLog | None:
    """Record a denied access attempt. The actor id is never recorded."""
    fields = _context_fields(ctx)
    fields["user_id"] = None
    if email is not None:
        fields["user_email"] = email
    return await write_audit_event(
        session,
        action="access.denied",
        status="failure",
        error_message=reason,
        metadata={"endpoint": ctx.endpoint or ctx.request_path},
        **fields,
    )


async def log_data_export(
    session: AsyncSession,
    ctx: AuditContext,
    export_type: str,
    record_count: int,
) -> AuditLog | None:
    """Record a bulk data export."""
    return await write_audit_event(
        session,
        action="data.export",
        resource_type=export_type,
        status="success",
        metadata={"exportType": export_type, "recordCount": record_count},
        **_context_fields(ctx),
    )


async def verify_audit_chain(session: AsyncSession) -> dict[str, Any]:
    """Re-derive the whole chain and report every record that does not link up.

    Returns:
        ``{isValid, totalLogs, verifiedLogs, tamperedLogs, message}``, or
        ``{isValid: False, message, error}`` when the store cannot be read.
    """
    try:
        result = await session.execute(select(AuditLog).order_by(AuditLog.id.asc()))
        records = list(result.scalars().all())
    except Exception as e:
        logger.exception("Failed to verify audit log integrity")
        return {"isValid": False, "message": "Failed to verify audit log integrity", "error": str(e)}

    total = len(records)
    if total == 0:
        return {"isValid": True, "totalLogs": 0, "verifiedLogs": 0, "tamperedLogs": [], "message": "No audit logs found"}

    findings = verify_chain(records)
    tampered = [finding.to_dict() for finding in findings]
    if tampered:
        message = f"Found {len(tampered)} tampered audit log(s) out of {total}"
        logger.warning(message)
    else:
        message = f"All {total} audit logs verified successfully"
    return {
        "isValid": not tampered,
        "totalLogs": total,
        "verifiedLogs": total - len(tampered),
        "tamperedLogs": tampered,
        "message": message,
    }


async def query_audit_logs(
    session: AsyncSession,
    *,
    user_id: int | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    status: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[AuditLog], int]:
    """Query audit logs with optional filters.

    Args:
        session: The database session.
        user_id: Filter by user ID.
        action: Filter by action code.
        resource_type: Filter by resource type.
        status: Filter by outcome status.
        start_time: Filter records at or after this timestamp.
        end_time: Filter records at or before this timestamp.
        page: Page number (1-based).
        page_size: Items per page.

    Returns:
        Tuple of (audit log records, total count).
    """
    query = select(AuditLog)
    count_query = select(func.count(AuditLog.id))

    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
        count_query = count_query.where(AuditLog.user_id == user_id)
    if action is not None:
        query = query.where(AuditLog.action == action)
        count_query = count_query.where(AuditLog.action == action)
    if resource_type is not None:
        query = query.where(AuditLog.resource_type == resource_type)
        count_query = count_query.where(AuditLog.resource_type == resource_type)
    if status is not None:
        query = query.where(AuditLog.status == status)
        count_query = count_query.where(AuditLog.status == status)
    if start_time is not None:
        query = query.where(AuditLog.timestamp >= start_time)
        count_query = count_query.where(AuditLog.timestamp >= start_time)
    if end_time is not None:
        query = query.where(AuditLog.timestamp <= end_time)
        count_query = count_query.where(AuditLog.timestamp <= end_time)

    total = (await session.execute(count_query)).scalar_one()

    offset = (page - 1) * page_size
    query = query.order_by(AuditLog.id.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    logs = list(result.scalars().all())

    return logs, total
