"""
Tests for the Alert History Store (in-memory and SQL).

Covers:
- Duplicate window (inside / outside, sent or not)
- Keying by user, location and return period
- Upsert by (user_id, alert_id)
- Recent alerts ordering
"""

from datetime import timedelta

import pytest

from flowwatch.alerting.history import InMemoryAlertHistory, SqlAlertHistory
from flowwatch.schemas import Alert, FlowUnit, ForecastRange, Severity
from tests.conftest import NOW


def _make_alert(
    user_id: str = "user-1",
    location_id: str = "loc-1",
    return_years: int = 5,
    hours_ago: float = 0,
    forecast_hours: float = 6,
    sent: bool = False,
) -> Alert:
    forecast_time = NOW + timedelta(hours=forecast_hours)
    return Alert(
        alert_id=f"{location_id}_{return_years}yr_{int(forecast_time.timestamp() * 1000)}",
        user_id=user_id,
        location_id=location_id,
        location_name="Provo River",
        forecasted_flow=300.0,
        unit=FlowUnit.CFS,
        return_years=return_years,
        threshold_flow=250.0,
        range=ForecastRange.SHORT,
        forecast_time=forecast_time,
        triggered_at=NOW - timedelta(hours=hours_ago),
        severity=Severity.SIGNIFICANT,
        sent=sent,
        sent_at=NOW if sent else None,
    )


@pytest.fixture(params=["memory", "sql"])
def history(request, clock, session_factory):
    if request.param == "memory":
        return InMemoryAlertHistory(clock=clock)
    return SqlAlertHistory(session_factory, clock=clock)


class TestDuplicateWindow:
    @pytest.mark.asyncio
    async def test_empty_history_no_duplicate(self, history):
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is False

    @pytest.mark.asyncio
    async def test_recent_record_is_duplicate(self, history):
        await history.record(_make_alert(hours_ago=3))
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is True

    @pytest.mark.asyncio
    async def test_unsent_record_still_counts(self, history):
        await history.record(_make_alert(hours_ago=1, sent=False))
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is True

    @pytest.mark.asyncio
    async def test_old_record_outside_window(self, history):
        await history.record(_make_alert(hours_ago=25))
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is False

    @pytest.mark.asyncio
    async def test_window_expires_with_clock(self, history, clock):
        await history.record(_make_alert())
        clock.advance(hours=23)
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is True
        clock.advance(hours=2)
        assert await history.exists("user-1", "loc-1", 5, within_hours=24) is False

    @pytest.mark.asyncio
    async def test_key_components_distinguish(self, history):
        await history.record(_make_alert())
        assert await history.exists("user-2", "loc-1", 5, within_hours=24) is False
        assert await history.exists("user-1", "loc-2", 5, within_hours=24) is False
        assert await history.exists("user-1", "loc-1", 10, within_hours=24) is False


class TestRecording:
    @pytest.mark.asyncio
    async def test_upsert_same_alert_overwrites(self, history):
        alert = _make_alert(sent=False)
        await history.record(alert)
        await history.record(alert.model_copy(update={"sent": True, "sent_at": NOW}))
        recent = await history.recent("user-1")
        assert len(recent) == 1
        assert recent[0].sent is True
        assert recent[0].sent_at == NOW

    @pytest.mark.asyncio
    async def test_same_alert_id_for_two_users_kept_apart(self, history):
        await history.record(_make_alert(user_id="user-1"))
        await history.record(_make_alert(user_id="user-2"))
        assert len(await history.recent("user-1")) == 1
        assert len(await history.recent("user-2")) == 1

    @pytest.mark.asyncio
    async def test_recent_newest_first_and_limited(self, history):
        for hours_ago, years in [(5, 2), (1, 5), (3, 10)]:
            await history.record(_make_alert(return_years=years, hours_ago=hours_ago))
        recent = await history.recent("user-1", limit=2)
        assert [a.return_years for a in recent] == [5, 10]

    @pytest.mark.asyncio
    async def test_round_trip_fields(self, history):
        alert = _make_alert(sent=True)
        await history.record(alert)
        (stored,) = await history.recent("user-1")
        assert stored.alert_id == alert.alert_id
        assert stored.forecast_time == alert.forecast_time
        assert stored.triggered_at == alert.triggered_at
        assert stored.severity == Severity.SIGNIFICANT
        assert stored.range == ForecastRange.SHORT
