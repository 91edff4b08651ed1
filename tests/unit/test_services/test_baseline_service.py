"""Tests for the behavioral baseline service."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_security.core.config import Settings
from clinic_security.core.exceptions import InvalidBaselineTypeError, UserNotFoundError
from clinic_security.lib.geolocation import BaseGeolocator, GeolocationResult
from clinic_security.models.audit_log import AuditLog
from clinic_security.models.login_history import UserLoginHistory
from clinic_security.models.user import User
from clinic_security.services.baseline_service import (
    NO_ACCESS_HISTORY_MESSAGE,
    NO_LOGIN_HISTORY_MESSAGE,
    calculate_baseline,
    get_user_baselines,
    recalculate_all_baselines,
)
from clinic_security.services.identity_service import UserByEmail, UserById


class StaticGeolocator(BaseGeolocator):
    """Provider answering from a fixed table."""

    def __init__(self, places: dict[str, str]) -> None:
        self.places = places

    @property
    def provider_name(self) -> str:
        return "static"

    async def locate(self, ip: str) -> GeolocationResult | None:
        place = self.places.get(ip)
        return GeolocationResult(label=place) if place else None


async def _add_logins(session: AsyncSession, user: User, entries: list[tuple[str | None, datetime]]) -> None:
    for ip, when in entries:
        session.add(UserLoginHistory(user_id=user.id, ip_address=ip, user_agent="pytest", login_timestamp=when))
    await session.commit()


def _days_ago(days: int, hour: int = 12) -> datetime:
    return (datetime.now(UTC) - timedelta(days=days)).replace(hour=hour, minute=0, second=0, microsecond=0)


class TestLocationBaseline:
    """Tests for the location baseline."""

    @pytest.mark.asyncio
    async def test_counts_ips_in_window(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        await _add_logins(
            async_session,
            staff_user,
            [
                ("203.0.113.1", _days_ago(1)),
                ("203.0.113.1", _days_ago(2)),
                ("203.0.113.1", _days_ago(3)),
                ("198.51.100.7", _days_ago(4)),
                (None, _days_ago(5)),
                ("192.0.2.99", _days_ago(45)),
            ],
        )

        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "location", settings=settings)

        data = baseline.baseline_data
        assert data["schemaVersion"] == 1
        assert data["totalLogins"] == 5
        assert data["uniqueLocations"] == 3
        assert data["commonLocations"][0] == {"ip": "203.0.113.1", "location": None, "frequency": 3}
        ips = [entry["ip"] for entry in data["commonLocations"]]
        assert "unknown" in ips
        assert "192.0.2.99" not in ips
        assert data["message"] is None

    @pytest.mark.asyncio
    async def test_geolocation_enrichment(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _add_logins(async_session, staff_user, [("8.8.8.8", _days_ago(1)), ("1.1.1.1", _days_ago(1))])
        geolocator = StaticGeolocator({"8.8.8.8": "Mountain View, California, United States"})

        baseline = await calculate_baseline(
            async_session, UserById(staff_user.id), "location", settings=settings, geolocator=geolocator
        )

        locations = {entry["ip"]: entry["location"] for entry in baseline.baseline_data["commonLocations"]}
        assert locations == {"8.8.8.8": "Mountain View, California, United States", "1.1.1.1": None}

    @pytest.mark.asyncio
    async def test_top_ten_only(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        await _add_logins(async_session, staff_user, [(f"203.0.113.{i}", _days_ago(1)) for i in range(12)])
        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "location", settings=settings)
        assert len(baseline.baseline_data["commonLocations"]) == 10

    @pytest.mark.asyncio
    async def test_no_history(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "location", settings=settings)
        assert baseline.baseline_data["totalLogins"] == 0
        assert baseline.baseline_data["commonLocations"] == []
        assert baseline.baseline_data["message"] == NO_LOGIN_HISTORY_MESSAGE.format(days=30)


class TestTimeBaseline:
    """Tests for the time-of-day baseline."""

    @pytest.mark.asyncio
    async def test_common_and_average_hours(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        entries = [("203.0.113.1", _days_ago(d, hour=9)) for d in (1, 2, 3)]
        entries += [("203.0.113.1", _days_ago(d, hour=10)) for d in (1, 2)]
        entries += [("203.0.113.1", _days_ago(1, hour=14))]
        await _add_logins(async_session, staff_user, entries)

        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "time", settings=settings)

        data = baseline.baseline_data
        assert data["commonHours"] == [9, 10, 14]
        # (9*3 + 10*2 + 14) / 6 = 10.17
        assert data["averageHour"] == 10
        assert data["totalLogins"] == 6
        assert data["hourDistribution"][0] == {"hour": 9, "frequency": 3}

    @pytest.mark.asyncio
    async def test_average_rounds_half_up(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _add_logins(async_session, staff_user, [("a", _days_ago(1, hour=9)), ("a", _days_ago(1, hour=10))])
        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "time", settings=settings)
        assert baseline.baseline_data["averageHour"] == 10

    @pytest.mark.asyncio
    async def test_no_history(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "time", settings=settings)
        data = baseline.baseline_data
        assert data["commonHours"] == []
        assert data["averageHour"] is None
        assert data["message"] == NO_LOGIN_HISTORY_MESSAGE.format(days=30)


class TestAccessPatternBaseline:
    """Tests for the access pattern baseline."""

    @pytest.mark.asyncio
    async def test_action_frequencies(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        now = datetime.now(UTC)
        for action, count in (("phi.view", 3), ("auth.login", 2)):
            for _ in range(count):
                async_session.add(AuditLog(user_id=staff_user.id, action=action, timestamp=now, previous_hash=""))
        async_session.add(
            AuditLog(user_id=staff_user.id, action="phi.export", timestamp=now - timedelta(days=60), previous_hash="")
        )
        await async_session.commit()

        baseline = await calculate_baseline(
            async_session, UserById(staff_user.id), "access_pattern", settings=settings
        )

        data = baseline.baseline_data
        assert data["commonActions"] == [
            {"action": "phi.view", "frequency": 3},
            {"action": "auth.login", "frequency": 2},
        ]
        assert data["totalActions"] == 5
        assert data["uniqueActions"] == 2

    @pytest.mark.asyncio
    async def test_no_history(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = await calculate_baseline(
            async_session, UserById(staff_user.id), "access_pattern", settings=settings
        )
        assert baseline.baseline_data["message"] == NO_ACCESS_HISTORY_MESSAGE.format(days=30)


class TestCalculateBaseline:
    """Tests for calculate_baseline upsert semantics and validation."""

    @pytest.mark.asyncio
    async def test_recalculation_keeps_calculated_at(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        first_at = datetime.now(UTC)
        second_at = first_at + timedelta(minutes=5)
        ref = UserById(staff_user.id)

        await _add_logins(async_session, staff_user, [("203.0.113.1", _days_ago(1))])
        with patch("clinic_security.services.baseline_service._utcnow", return_value=first_at):
            first = await calculate_baseline(async_session, ref, "location", settings=settings)
        first_id = first.id
        first_calculated = first.calculated_at
        first_updated = first.last_updated

        await _add_logins(async_session, staff_user, [("203.0.113.2", _days_ago(1))])
        with patch("clinic_security.services.baseline_service._utcnow", return_value=second_at):
            second = await calculate_baseline(async_session, ref, "location", settings=settings)

        assert second.id == first_id
        assert second.calculated_at == first_calculated
        assert second.last_updated > first_updated
        assert second.last_updated.replace(tzinfo=None) == second_at.replace(tzinfo=None)
        assert second.baseline_data["totalLogins"] == 2

    @pytest.mark.asyncio
    async def test_by_email(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = await calculate_baseline(
            async_session, UserByEmail("Nurse@Clinic.test"), "time", settings=settings
        )
        assert baseline.user_id == staff_user.id

    @pytest.mark.asyncio
    async def test_invalid_type(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        with pytest.raises(InvalidBaselineTypeError, match="Must be: location, time, or access_pattern"):
            await calculate_baseline(async_session, UserById(staff_user.id), "device", settings=settings)

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_session: AsyncSession, settings: Settings) -> None:
        with pytest.raises(UserNotFoundError):
            await calculate_baseline(async_session, UserById(404), "time", settings=settings)

    @pytest.mark.asyncio
    async def test_window_from_settings(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        await _add_logins(async_session, staff_user, [("203.0.113.1", _days_ago(1)), ("203.0.113.1", _days_ago(10))])
        short = settings.model_copy(update={"baseline_window_days": 7})
        baseline = await calculate_baseline(async_session, UserById(staff_user.id), "location", settings=short)
        assert baseline.baseline_data["totalLogins"] == 1


class TestGetUserBaselines:
    """Tests for get_user_baselines."""

    @pytest.mark.asyncio
    async def test_ordered_by_type(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        for baseline_type in ("time", "location", "access_pattern"):
            await calculate_baseline(async_session, UserById(staff_user.id), baseline_type, settings=settings)

        baselines = await get_user_baselines(async_session, UserById(staff_user.id), settings=settings)
        assert [b.baseline_type for b in baselines] == ["access_pattern", "location", "time"]

    @pytest.mark.asyncio
    async def test_none_stored(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        assert await get_user_baselines(async_session, UserById(staff_user.id), settings=settings) == []


class TestRecalculateAllBaselines:
    """Tests for recalculate_all_baselines."""

    @pytest.mark.asyncio
    async def test_sweeps_active_users(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        admin_user: User,
        staff_user: User,
        user_factory,
    ) -> None:
        await user_factory("retired@clinic.test", is_active=False)

        result = await recalculate_all_baselines(session_factory, None, settings=settings)

        assert result == {
            "success": True,
            "totalUsers": 2,
            "successCount": 6,
            "errorCount": 0,
            "errors": [],
        }

    @pytest.mark.asyncio
    async def test_failures_are_collected(
        self, session_factory: async_sessionmaker[AsyncSession], settings: Settings, staff_user: User
    ) -> None:
        real = calculate_baseline

        async def flaky(session, ref, baseline_type, **kwargs):  # type: ignore[no-untyped-def]
            if baseline_type == "time":
                raise RuntimeError("clock skew")
            return await real(session, ref, baseline_type, **kwargs)

        with patch("clinic_security.services.baseline_service.calculate_baseline", side_effect=flaky):
            result = await recalculate_all_baselines(session_factory, None, settings=settings)

        assert result["success"] is True
        assert result["successCount"] == 2
        assert result["errorCount"] == 1
        assert result["errors"] == [
            {"userId": staff_user.id, "email": "nurse@clinic.test", "baselineType": "time", "error": "clock skew"}
        ]

    @pytest.mark.asyncio
    async def test_user_enumeration_failure(self, settings: Settings) -> None:
        def broken_factory():  # type: ignore[no-untyped-def]
            raise RuntimeError("pool exhausted")

        result = await recalculate_all_baselines(broken_factory, None, settings=settings)  # type: ignore[arg-type]
        assert result["success"] is False
        assert result["error"] == "pool exhausted"
        assert result["totalUsers"] == 0
