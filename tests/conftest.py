"""
Test fixtures for FlowWatch.

Provides:
- In-memory SQLite engine + session factory with all tables
- A fixed clock
- Sample data factories shared across test modules
"""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from flowwatch.db import models  # noqa: F401  register all models
from flowwatch.db.engine import Base
from flowwatch.schemas import (
    FlowUnit,
    ForecastPoint,
    ForecastRange,
    ForecastSeries,
    ThresholdSet,
)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

# Thresholds used by the end-to-end scenarios (cfs)
SCENARIO_THRESHOLDS = {2: 150.0, 5: 250.0, 10: 350.0, 25: 500.0, 50: 650.0, 100: 800.0}


class FakeClock:
    """Settable clock: ``clock()`` returns the current instant."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Factories ─────────────────────────────────────────────────────────


def make_point(
    flow: float,
    hours_ahead: float = 6,
    forecast_range: ForecastRange = ForecastRange.SHORT,
    unit: FlowUnit = FlowUnit.CFS,
) -> ForecastPoint:
    return ForecastPoint(
        valid_time=NOW + timedelta(hours=hours_ahead),
        flow=flow,
        unit=unit,
        range=forecast_range,
    )


def make_series(location_id: str, *points: ForecastPoint) -> ForecastSeries:
    return ForecastSeries(location_id=location_id, points=list(points), fetched_at=NOW)


def make_thresholds(
    location_id: str = "loc-1",
    thresholds: dict[int, float] | None = None,
    unit: FlowUnit = FlowUnit.CFS,
) -> ThresholdSet:
    return ThresholdSet(
        location_id=location_id,
        thresholds=dict(SCENARIO_THRESHOLDS if thresholds is None else thresholds),
        unit=unit,
    )


def make_prefs_record(user_id: str = "user-1", **overrides) -> dict:
    record = {
        "user_id": user_id,
        "enabled": True,
        "monitored_location_ids": ["loc-1"],
        "include_short_range": True,
        "include_medium_range": True,
        "quiet_hours_enabled": False,
    }
    record.update(overrides)
    return record
