"""Storage-level immutability for the audit log.

Installs BEFORE DELETE / BEFORE UPDATE guards on ``audit_logs`` so that no
client, including this application, can rewrite history. The update guard
lets exactly one change through: ``user_id`` going to NULL, which is what
``ON DELETE SET NULL`` does when a user is removed.

PostgreSQL uses plpgsql trigger functions; SQLite uses ``RAISE(ABORT)``
triggers with the same names so tests exercise the same behavior.
"""

from typing import Any

from loguru import logger
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from clinic_security.models.audit_log import AuditLog
from clinic_security.models.base import Base
from clinic_security.models.user import User

DELETE_GUARD = "audit_logs_prevent_delete"
UPDATE_GUARD = "audit_logs_prevent_update"
GUARD_NAMES = (DELETE_GUARD, UPDATE_GUARD)

DELETE_MESSAGE = "Audit logs are immutable and cannot be deleted"
UPDATE_MESSAGE = "Audit logs are immutable and cannot be modified"

_IMMUTABLE_COLUMNS = (
    "id",
    "timestamp",
    "user_email",
    "user_role",
    "action",
    "resource_type",
    "resource_id",
    "ip_address",
    "user_agent",
    "request_method",
    "request_path",
    "status",
    "error_code",
    "error_message",
    "metadata",
    "previous_hash",
    "created_at",
)

_PG_CHANGED = " OR\n        ".join(f'OLD."{col}" IS DISTINCT FROM NEW."{col}"' for col in _IMMUTABLE_COLUMNS)
_SQLITE_CHANGED = " OR ".join(f'OLD."{col}" IS NOT NEW."{col}"' for col in _IMMUTABLE_COLUMNS)

POSTGRES_GUARD_STATEMENTS: tuple[str, ...] = (
    f"""
    CREATE OR REPLACE FUNCTION prevent_audit_log_delete()
    RETURNS TRIGGER AS $$
    BEGIN
      RAISE EXCEPTION '{DELETE_MESSAGE}. Deletion attempted on log ID: %', OLD.id;
    END;
    $$ LANGUAGE plpgsql
    """,
    f"""
    CREATE OR REPLACE FUNCTION prevent_audit_log_update()
    RETURNS TRIGGER AS $$
    BEGIN
      IF (
        {_PG_CHANGED} OR
        (OLD.user_id IS DISTINCT FROM NEW.user_id AND NEW.user_id IS NOT NULL)
      ) THEN
        RAISE EXCEPTION '{UPDATE_MESSAGE}. Update attempted on log ID: %', OLD.id;
      END IF;
      RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    f"DROP TRIGGER IF EXISTS {DELETE_GUARD} ON audit_logs",
    f"DROP TRIGGER IF EXISTS {UPDATE_GUARD} ON audit_logs",
    f"""
    CREATE TRIGGER {DELETE_GUARD}
    BEFORE DELETE ON audit_logs
    FOR EACH ROW
    EXECUTE FUNCTION prevent_audit_log_delete()
    """,
    f"""
    CREATE TRIGGER {UPDATE_GUARD}
    BEFORE UPDATE ON audit_logs
    FOR EACH ROW
    EXECUTE FUNCTION prevent_audit_log_update()
    """,
)

POSTGRES_DROP_STATEMENTS: tuple[str, ...] = (
    f"DROP TRIGGER IF EXISTS {DELETE_GUARD} ON audit_logs",
    f"DROP TRIGGER IF EXISTS {UPDATE_GUARD} ON audit_logs",
    "DROP FUNCTION IF EXISTS prevent_audit_log_delete()",
    "DROP FUNCTION IF EXISTS prevent_audit_log_update()",
)

SQLITE_GUARD_STATEMENTS: tuple[str, ...] = (
    f"DROP TRIGGER IF EXISTS {DELETE_GUARD}",
    f"DROP TRIGGER IF EXISTS {UPDATE_GUARD}",
    f"""
    CREATE TRIGGER {DELETE_GUARD}
    BEFORE DELETE ON audit_logs
    FOR EACH ROW
    BEGIN
      SELECT RAISE(ABORT, '{DELETE_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER {UPDATE_GUARD}
    BEFORE UPDATE ON audit_logs
    FOR EACH ROW
    WHEN {_SQLITE_CHANGED} OR (OLD.user_id IS NOT NEW.user_id AND NEW.user_id IS NOT NULL)
    BEGIN
      SELECT RAISE(ABORT, '{UPDATE_MESSAGE}');
    END
    """,
)


async def _guard_rows(conn: AsyncConnection) -> list[dict[str, Any]]:
    """Return the installed guards as ``{triggerName, eventManipulation, actionTiming}`` rows."""
    if conn.dialect.name == "postgresql":
        result = await conn.execute(
            text(
                "SELECT trigger_name, event_manipulation, action_timing "
                "FROM information_schema.triggers "
                "WHERE event_object_table = 'audit_logs' "
                "AND event_object_schema = current_schema() "
                "AND trigger_name IN (:delete_guard, :update_guard) "
                "ORDER BY trigger_name"
            ),
            {"delete_guard": DELETE_GUARD, "update_guard": UPDATE_GUARD},
        )
        return [
            {"triggerName": row[0], "eventManipulation": row[1], "actionTiming": row[2]}
            for row in result.all()
        ]

    result = await conn.execute(
        text(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'trigger' AND tbl_name = 'audit_logs' "
            "AND name IN (:delete_guard, :update_guard) "
            "ORDER BY name"
        ),
        {"delete_guard": DELETE_GUARD, "update_guard": UPDATE_GUARD},
    )
    return [
        {
            "triggerName": row[0],
            "eventManipulation": "DELETE" if row[0] == DELETE_GUARD else "UPDATE",
            "actionTiming": "BEFORE",
        }
        for row in result.all()
    ]


async def _count_guards(conn: AsyncConnection) -> int:
    rows = await _guard_rows(conn)
    return len({row["triggerName"] for row in rows})


async def _ensure_audit_table(conn: AsyncConnection) -> None:
    await conn.run_sync(
        lambda sync_conn: Base.metadata.create_all(
            sync_conn, tables=[User.__table__, AuditLog.__table__], checkfirst=True
        )
    )


async def _ensure_previous_hash_column(conn: AsyncConnection) -> None:
    columns = await conn.run_sync(lambda sync_conn: {c["name"] for c in inspect(sync_conn).get_columns("audit_logs")})
    if "previous_hash" in columns:
        return
    logger.info("Adding previous_hash column to audit_logs")
    await conn.execute(text("ALTER TABLE audit_logs ADD COLUMN previous_hash VARCHAR(64)"))
    await conn.execute(text("UPDATE audit_logs SET previous_hash = '' WHERE previous_hash IS NULL"))
    await conn.execute(text("CREATE INDEX IF NOT EXISTS ix_audit_logs_previous_hash ON audit_logs (previous_hash)"))


async def install_guards(conn: AsyncConnection) -> None:
    """Drop and recreate both guards for the connection's dialect."""
    statements = POSTGRES_GUARD_STATEMENTS if conn.dialect.name == "postgresql" else SQLITE_GUARD_STATEMENTS
    for statement in statements:
        await conn.execute(text(statement))


async def initialize_audit_log_immutability(engine: AsyncEngine) -> bool:
    """Idempotently make the audit log append-only.

    Ensures the table and its ``previous_hash`` column exist, then installs
    both guards unless they are already present. Never raises: a failure is
    logged and reported as ``False`` so application startup continues.

    Args:
        engine: Engine bound to the audit database.

    Returns:
        True when both guards are active afterwards.
    """
    try:
        async with engine.begin() as conn:
            await _ensure_audit_table(conn)
            await _ensure_previous_hash_column(conn)
            if await _count_guards(conn) == len(GUARD_NAMES):
                logger.info("Audit log immutability already active")
                return True
            await install_guards(conn)
        logger.info("Audit log immutability guards installed")
        return True
    except Exception:
        logger.exception("Failed to initialize audit log immutability")
        return False


async def verify_immutability_status(session: AsyncSession) -> dict[str, Any]:
    """Report whether each guard is installed.

    Returns:
        ``{deleteProtection, updateProtection, isFullyProtected, triggers, message}``;
        on error both protections are ``UNKNOWN`` and ``error`` carries the text.
    """
    try:
        conn = await session.connection()
        rows = await _guard_rows(conn)
    except Exception as e:
        logger.exception("Failed to verify immutability status")
        return {
            "deleteProtection": "UNKNOWN",
            "updateProtection": "UNKNOWN",
            "isFullyProtected": False,
            "triggers": [],
            "message": "Failed to verify immutability status",
            "error": str(e),
        }

    names = {row["triggerName"] for row in rows}
    delete_status = "ACTIVE" if DELETE_GUARD in names else "MISSING"
    update_status = "ACTIVE" if UPDATE_GUARD in names else "MISSING"
    fully_protected = delete_status == "ACTIVE" and update_status == "ACTIVE"
    return {
        "deleteProtection": delete_status,
        "updateProtection": update_status,
        "isFullyProtected": fully_protected,
        "triggers": rows,
        "message": (
            "Audit log immutability is fully active"
            if fully_protected
            else "Audit log immutability is not fully active"
        ),
    }
