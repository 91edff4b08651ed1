"""Tests for behavioral anomaly detection and lifecycle."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.core.config import Settings
from clinic_security.core.exceptions import AnomalyNotFoundError, InvalidArgumentError, InvalidStatusError
from clinic_security.models.behavior_baseline import BehaviorBaseline
from clinic_security.models.behavioral_anomaly import BehavioralAnomaly
from clinic_security.models.breach_incident import BreachIncident
from clinic_security.models.user import User
from clinic_security.schemas.baseline import (
    AccessPatternBaseline,
    ActionCount,
    LocationBaseline,
    LocationEntry,
    TimeBaseline,
)
from clinic_security.services.anomaly_service import (
    detect_anomalies,
    get_anomaly_statistics,
    list_anomalies,
    list_notified_anomalies,
    update_anomaly_status,
)


async def _store_baseline(session: AsyncSession, user: User, baseline_type: str, payload) -> None:  # type: ignore[no-untyped-def]
    session.add(BehaviorBaseline(user_id=user.id, baseline_type=baseline_type, baseline_data=payload.to_json()))
    await session.commit()


def _time_baseline(hours: list[int], average: int | None) -> TimeBaseline:
    return TimeBaseline(common_hours=hours, average_hour=average, total_logins=20)


async def _add_anomalies(
    session: AsyncSession,
    user: User,
    count: int,
    *,
    status: str = "new",
    severity: str = "low",
    anomaly_type: str = "unusual_time",
    detected_at: datetime | None = None,
) -> list[BehavioralAnomaly]:
    anomalies = [
        BehavioralAnomaly(
            user_id=user.id,
            anomaly_type=anomaly_type,
            severity=severity,
            details={"n": i},
            detected_at=detected_at or datetime.now(UTC) - timedelta(minutes=i),
            status=status,
        )
        for i in range(count)
    ]
    session.add_all(anomalies)
    await session.commit()
    return anomalies


class TestDetectAnomalies:
    """Tests for detect_anomalies."""

    @pytest.mark.asyncio
    async def test_no_baselines_never_flags(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        result = await detect_anomalies(
            async_session,
            staff_user.id,
            settings=settings,
            ip_address="203.0.113.200",
            timestamp=datetime(2026, 5, 1, 3, 0, tzinfo=UTC),
            event_type="phi.export",
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_unusual_time(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([9, 10, 14], 11))

        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 3, 0, tzinfo=UTC)
        )

        assert result is not None
        assert len(result) == 1
        anomaly = result[0]
        assert anomaly.anomaly_type == "unusual_time"
        assert anomaly.severity == "low"
        assert anomaly.status == "new"
        assert anomaly.details["eventHour"] == 3
        assert anomaly.details["expectedHours"] == [9, 10, 14]

    @pytest.mark.asyncio
    async def test_common_hour_not_flagged(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([9, 10, 14], 11))
        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 14, 30, tzinfo=UTC)
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_within_tolerance_not_flagged(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([9, 10, 14], 11))
        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 13, 0, tzinfo=UTC)
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_hour_distance_wraps_midnight(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([22, 23], 23))
        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 1, 0, tzinfo=UTC)
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_naive_timestamp_is_utc(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([9], 9))
        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 20, 0)
        )
        assert result is not None
        assert result[0].details["eventHour"] == 20

    @pytest.mark.asyncio
    async def test_unusual_location(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = LocationBaseline(
            common_locations=[LocationEntry(ip="203.0.113.1", frequency=8), LocationEntry(ip="203.0.113.2", frequency=4)],
            total_logins=12,
            unique_locations=2,
        )
        await _store_baseline(async_session, staff_user, "location", baseline)

        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, ip_address="198.51.100.50", event_type="auth.login"
        )

        assert result is not None
        assert [a.anomaly_type for a in result] == ["unusual_location"]
        assert result[0].severity == "medium"
        assert result[0].details == {
            "ipAddress": "198.51.100.50",
            "expectedLocations": ["203.0.113.1", "203.0.113.2"],
            "eventType": "auth.login",
        }

    @pytest.mark.asyncio
    async def test_location_needs_enough_history(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        baseline = LocationBaseline(
            common_locations=[LocationEntry(ip="203.0.113.1", frequency=3)], total_logins=3, unique_locations=1
        )
        await _store_baseline(async_session, staff_user, "location", baseline)
        result = await detect_anomalies(async_session, staff_user.id, settings=settings, ip_address="198.51.100.50")
        assert result is None

    @pytest.mark.asyncio
    async def test_unusual_access(self, async_session: AsyncSession, settings: Settings, staff_user: User) -> None:
        baseline = AccessPatternBaseline(
            common_actions=[ActionCount(action="phi.view", frequency=30)], total_actions=30, unique_actions=1
        )
        await _store_baseline(async_session, staff_user, "access_pattern", baseline)

        result = await detect_anomalies(async_session, staff_user.id, settings=settings, event_type="phi.export")

        assert result is not None
        assert result[0].anomaly_type == "unusual_access"
        assert result[0].details["expectedActions"] == ["phi.view"]

    @pytest.mark.asyncio
    async def test_multiple_findings_are_persisted(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        await _store_baseline(async_session, staff_user, "time", _time_baseline([9], 9))
        await _store_baseline(
            async_session,
            staff_user,
            "location",
            LocationBaseline(common_locations=[LocationEntry(ip="203.0.113.1", frequency=9)], total_logins=9),
        )

        result = await detect_anomalies(
            async_session,
            staff_user.id,
            settings=settings,
            ip_address="198.51.100.50",
            timestamp=datetime(2026, 5, 1, 22, 0, tzinfo=UTC),
            event_type="auth.login",
        )

        assert result is not None
        assert {a.anomaly_type for a in result} == {"unusual_location", "unusual_time"}
        stored = (await async_session.execute(select(BehavioralAnomaly))).scalars().all()
        assert len(stored) == 2

    @pytest.mark.asyncio
    async def test_corrupt_baseline_is_contained(
        self, async_session: AsyncSession, settings: Settings, staff_user: User
    ) -> None:
        async_session.add(
            BehaviorBaseline(user_id=staff_user.id, baseline_type="time", baseline_data={"commonHours": "nine"})
        )
        await async_session.commit()
        result = await detect_anomalies(
            async_session, staff_user.id, settings=settings, timestamp=datetime(2026, 5, 1, 3, 0, tzinfo=UTC)
        )
        assert result is None


class TestListAnomalies:
    """Tests for list_anomalies and list_notified_anomalies."""

    @pytest.mark.asyncio
    async def test_excludes_incident_linked(self, async_session: AsyncSession, staff_user: User) -> None:
        await _add_anomalies(async_session, staff_user, 15)
        linked = await _add_anomalies(async_session, staff_user, 3, severity="high")
        for anomaly in linked:
            async_session.add(BreachIncident(anomaly_id=anomaly.id, incident_type="unauthorized_access", severity="high"))
        await async_session.commit()

        rows, total = await list_anomalies(async_session, status="new", limit=10, offset=0)

        assert total == 15
        assert len(rows) == 10
        assert all(row["incident_id"] is None for row in rows)
        assert rows[0]["email"] == "nurse@clinic.test"
        assert rows[0]["first_name"] == "Nora"

    @pytest.mark.asyncio
    async def test_ordered_newest_first(self, async_session: AsyncSession, staff_user: User) -> None:
        await _add_anomalies(async_session, staff_user, 3)
        rows, _ = await list_anomalies(async_session)
        detected = [row["detected_at"] for row in rows]
        assert detected == sorted(detected, reverse=True)

    @pytest.mark.asyncio
    async def test_filters(self, async_session: AsyncSession, staff_user: User, admin_user: User) -> None:
        await _add_anomalies(async_session, staff_user, 2, severity="high")
        await _add_anomalies(async_session, admin_user, 1, severity="low")
        await _add_anomalies(async_session, staff_user, 1, detected_at=datetime.now(UTC) - timedelta(days=20))

        _, total = await list_anomalies(async_session, severity="high")
        assert total == 2
        _, total = await list_anomalies(async_session, user_id=admin_user.id)
        assert total == 1
        _, total = await list_anomalies(async_session, start_date=datetime.now(UTC) - timedelta(days=7))
        assert total == 3
        _, total = await list_anomalies(async_session, end_date=datetime.now(UTC) - timedelta(days=7))
        assert total == 1

    @pytest.mark.asyncio
    async def test_notified_only_incident_linked(self, async_session: AsyncSession, staff_user: User) -> None:
        await _add_anomalies(async_session, staff_user, 4)
        linked = await _add_anomalies(async_session, staff_user, 2, severity="high")
        incidents = [
            BreachIncident(anomaly_id=anomaly.id, incident_type="unauthorized_access", severity="high")
            for anomaly in linked
        ]
        async_session.add_all(incidents)
        await async_session.commit()

        rows, total = await list_notified_anomalies(async_session)

        assert total == 2
        assert {row["id"] for row in rows} == {a.id for a in linked}
        assert {row["incident_id"] for row in rows} == {i.id for i in incidents}


class TestUpdateAnomalyStatus:
    """Tests for update_anomaly_status."""

    @pytest.mark.asyncio
    async def test_review_stamps_reviewer(self, async_session: AsyncSession, staff_user: User, admin_user: User) -> None:
        (anomaly,) = await _add_anomalies(async_session, staff_user, 1)

        updated = await update_anomaly_status(async_session, anomaly.id, "reviewed", admin_user.id)

        assert updated.status == "reviewed"
        assert updated.reviewed_by == admin_user.id
        assert updated.reviewed_at is not None

    @pytest.mark.asyncio
    async def test_back_to_new_leaves_reviewed_at_unset(
        self, async_session: AsyncSession, staff_user: User, admin_user: User
    ) -> None:
        (anomaly,) = await _add_anomalies(async_session, staff_user, 1)
        updated = await update_anomaly_status(async_session, str(anomaly.id), "new", str(admin_user.id))
        assert updated.status == "new"
        assert updated.reviewed_at is None
        assert updated.reviewed_by == admin_user.id

    @pytest.mark.asyncio
    async def test_any_transition_allowed(self, async_session: AsyncSession, staff_user: User) -> None:
        (anomaly,) = await _add_anomalies(async_session, staff_user, 1)
        for status in ("dismissed", "escalated", "reviewed", "new"):
            updated = await update_anomaly_status(async_session, anomaly.id, status)
            assert updated.status == status

    @pytest.mark.asyncio
    async def test_invalid_status(self, async_session: AsyncSession) -> None:
        with pytest.raises(InvalidStatusError, match="Must be: new, reviewed, dismissed, or escalated"):
            await update_anomaly_status(async_session, 1, "closed")

    @pytest.mark.asyncio
    async def test_non_integer_id(self, async_session: AsyncSession) -> None:
        with pytest.raises(InvalidArgumentError):
            await update_anomaly_status(async_session, "abc", "reviewed")

    @pytest.mark.asyncio
    async def test_unknown_id(self, async_session: AsyncSession) -> None:
        with pytest.raises(AnomalyNotFoundError):
            await update_anomaly_status(async_session, 12345, "reviewed")


class TestAnomalyStatistics:
    """Tests for get_anomaly_statistics."""

    @pytest.mark.asyncio
    async def test_counts(self, async_session: AsyncSession, staff_user: User) -> None:
        await _add_anomalies(async_session, staff_user, 2, severity="high", anomaly_type="unusual_location")
        await _add_anomalies(async_session, staff_user, 3, status="reviewed")
        await _add_anomalies(async_session, staff_user, 1, detected_at=datetime.now(UTC) - timedelta(days=30))

        stats = await get_anomaly_statistics(async_session)

        assert stats["total"] == 6
        assert stats["by_status"] == {"new": 3, "reviewed": 3}
        assert stats["by_severity"] == {"high": 2, "low": 4}
        assert stats["by_type"] == {"unusual_location": 2, "unusual_time": 4}
        assert stats["recent"] == 5

    @pytest.mark.asyncio
    async def test_empty(self, async_session: AsyncSession) -> None:
        stats = await get_anomaly_statistics(async_session)
        assert stats == {"total": 0, "by_status": {}, "by_severity": {}, "by_type": {}, "recent": 0}
