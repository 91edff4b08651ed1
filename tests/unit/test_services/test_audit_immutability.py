"""Tests for the audit log immutability guards (SQLite triggers)."""

import pytest
from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from clinic_security.models.audit_log import AuditLog
from clinic_security.models.user import User
from clinic_security.services.audit_immutability import (
    DELETE_GUARD,
    UPDATE_GUARD,
    initialize_audit_log_immutability,
    verify_immutability_status,
)
from clinic_security.services.audit_service import write_audit_event


class TestInitializeImmutability:
    """Tests for initialize_audit_log_immutability."""

    @pytest.mark.asyncio
    async def test_installs_guards(self, async_engine: AsyncEngine, async_session: AsyncSession) -> None:
        assert await initialize_audit_log_immutability(async_engine) is True

        status = await verify_immutability_status(async_session)

        assert status["deleteProtection"] == "ACTIVE"
        assert status["updateProtection"] == "ACTIVE"
        assert status["isFullyProtected"] is True
        assert status["message"] == "Audit log immutability is fully active"
        assert {t["triggerName"] for t in status["triggers"]} == {DELETE_GUARD, UPDATE_GUARD}
        assert all(t["actionTiming"] == "BEFORE" for t in status["triggers"])

    @pytest.mark.asyncio
    async def test_is_idempotent(self, async_engine: AsyncEngine, async_session: AsyncSession) -> None:
        assert await initialize_audit_log_immutability(async_engine) is True
        assert await initialize_audit_log_immutability(async_engine) is True

        status = await verify_immutability_status(async_session)
        assert len(status["triggers"]) == 2

    @pytest.mark.asyncio
    async def test_missing_before_install(self, async_session: AsyncSession) -> None:
        status = await verify_immutability_status(async_session)

        assert status["deleteProtection"] == "MISSING"
        assert status["updateProtection"] == "MISSING"
        assert status["isFullyProtected"] is False
        assert status["message"] == "Audit log immutability is not fully active"

    @pytest.mark.asyncio
    async def test_adds_previous_hash_to_legacy_table(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            async with engine.begin() as conn:
                await conn.execute(
                    text(
                        "CREATE TABLE audit_logs ("
                        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                        "timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP, "
                        "user_id INTEGER, user_email VARCHAR(255), user_role VARCHAR(20), "
                        "action VARCHAR(100) NOT NULL, resource_type VARCHAR(50), resource_id VARCHAR(100), "
                        "ip_address VARCHAR(45), user_agent TEXT, request_method VARCHAR(10), "
                        "request_path VARCHAR(255), status VARCHAR(20) NOT NULL DEFAULT 'success', "
                        "error_code VARCHAR(50), error_message TEXT, metadata JSON, "
                        "created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP)"
                    )
                )
                await conn.execute(text("INSERT INTO audit_logs (action) VALUES ('auth.login')"))

            assert await initialize_audit_log_immutability(engine) is True

            async with engine.connect() as conn:
                previous = (await conn.execute(text("SELECT previous_hash FROM audit_logs"))).scalar_one()
            assert previous == ""
        finally:
            await engine.dispose()


class TestGuards:
    """Tests for the installed delete and update guards."""

    @pytest.mark.asyncio
    async def test_delete_rejected(self, async_engine: AsyncEngine, async_session: AsyncSession) -> None:
        await initialize_audit_log_immutability(async_engine)
        record = await write_audit_event(async_session, action="auth.login")
        assert record is not None

        with pytest.raises(DBAPIError, match="immutable"):
            await async_session.execute(delete(AuditLog).where(AuditLog.id == record.id))
        await async_session.rollback()

        remaining = (await async_session.execute(select(AuditLog))).scalars().all()
        assert len(remaining) == 1

    @pytest.mark.asyncio
    async def test_update_rejected(self, async_engine: AsyncEngine, async_session: AsyncSession) -> None:
        await initialize_audit_log_immutability(async_engine)
        record = await write_audit_event(async_session, action="auth.login")
        assert record is not None

        with pytest.raises(DBAPIError, match="immutable"):
            await async_session.execute(update(AuditLog).where(AuditLog.id == record.id).values(action="auth.logout"))
        await async_session.rollback()

    @pytest.mark.asyncio
    async def test_previous_hash_cannot_be_rewritten(
        self, async_engine: AsyncEngine, async_session: AsyncSession
    ) -> None:
        await initialize_audit_log_immutability(async_engine)
        await write_audit_event(async_session, action="auth.login")
        second = await write_audit_event(async_session, action="auth.logout")
        assert second is not None

        with pytest.raises(DBAPIError, match="immutable"):
            await async_session.execute(
                update(AuditLog).where(AuditLog.id == second.id).values(previous_hash="0" * 64)
            )
        await async_session.rollback()

    @pytest.mark.asyncio
    async def test_user_id_may_be_cleared(
        self, async_engine: AsyncEngine, async_session: AsyncSession, staff_user: User
    ) -> None:
        await initialize_audit_log_immutability(async_engine)
        record = await write_audit_event(async_session, action="auth.login", user_id=staff_user.id)
        assert record is not None

        await async_session.execute(update(AuditLog).where(AuditLog.id == record.id).values(user_id=None))
        await async_session.commit()

        stored = (await async_session.execute(select(AuditLog.user_id).where(AuditLog.id == record.id))).scalar_one()
        assert stored is None

    @pytest.mark.asyncio
    async def test_user_id_cannot_be_reassigned(
        self, async_engine: AsyncEngine, async_session: AsyncSession, staff_user: User, admin_user: User
    ) -> None:
        await initialize_audit_log_immutability(async_engine)
        record = await write_audit_event(async_session, action="auth.login", user_id=staff_user.id)
        assert record is not None

        with pytest.raises(DBAPIError, match="immutable"):
            await async_session.execute(update(AuditLog).where(AuditLog.id == record.id).values(user_id=admin_user.id))
        await async_session.rollback()

    @pytest.mark.asyncio
    async def test_inserts_still_allowed(self, async_engine: AsyncEngine, async_session: AsyncSession) -> None:
        await initialize_audit_log_immutability(async_engine)
        for action in ("auth.login", "phi.view", "auth.logout"):
            assert await write_audit_event(async_session, action=action) is not None
