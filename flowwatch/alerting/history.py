"""
Alert History Store.

Persistent record of every alert that got past dedupe, sent or not. The
dispatcher consults it to suppress repeats: an alert is a duplicate when the
same user already has a record for the same (location, return period) whose
``triggered_at`` lies inside the dedup window.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.config import settings
from flowwatch.db.engine import session_scope
from flowwatch.db.models import AlertHistoryRow
from flowwatch.schemas import Alert

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertHistoryStore(Protocol):
    async def exists(
        self,
        user_id: str,
        location_id: str,
        return_years: int,
        within_hours: Optional[int] = None,
    ) -> bool: ...

    async def record(self, alert: Alert) -> None: ...

    async def recent(self, user_id: str, limit: int = 50) -> list[Alert]: ...


class InMemoryAlertHistory:
    """Dict-backed history for tests and single-process runs."""

    def __init__(self, clock: Clock = _utcnow):
        self.clock = clock
        self._alerts: dict[tuple[str, str], Alert] = {}

    async def exists(
        self,
        user_id: str,
        location_id: str,
        return_years: int,
        within_hours: Optional[int] = None,
    ) -> bool:
        hours = within_hours if within_hours is not None else settings.dedup_window_hours
        cutoff = self.clock() - timedelta(hours=hours)
        return any(
            a.user_id == user_id
            and a.location_id == location_id
            and a.return_years == return_years
            and a.triggered_at >= cutoff
            for a in self._alerts.values()
        )

    async def record(self, alert: Alert) -> None:
        self._alerts[(alert.user_id, alert.alert_id)] = alert.model_copy()

    async def recent(self, user_id: str, limit: int = 50) -> list[Alert]:
        mine = [a for a in self._alerts.values() if a.user_id == user_id]
        mine.sort(key=lambda a: a.triggered_at, reverse=True)
        return mine[:limit]

    def __len__(self) -> int:
        return len(self._alerts)


def _row_to_alert(row: AlertHistoryRow) -> Alert:
    return Alert(
        alert_id=row.alert_id,
        user_id=row.user_id,
        location_id=row.location_id,
        location_name=row.location_name,
        forecasted_flow=row.forecasted_flow,
        unit=row.unit,
        return_years=row.return_years,
        threshold_flow=row.threshold_flow,
        range=row.range,
        forecast_time=row.forecast_time,
        triggered_at=row.triggered_at,
        severity=row.severity,
        sent=row.sent,
        sent_at=row.sent_at,
    )


def _apply(row: AlertHistoryRow, alert: Alert) -> None:
    row.location_id = alert.location_id
    row.location_name = alert.location_name
    row.forecasted_flow = alert.forecasted_flow
    row.threshold_flow = alert.threshold_flow
    row.unit = alert.unit.value
    row.return_years = alert.return_years
    row.range = alert.range.value
    row.severity = alert.severity.value
    row.forecast_time = alert.forecast_time
    row.triggered_at = alert.triggered_at
    row.sent = alert.sent
    row.sent_at = alert.sent_at


class SqlAlertHistory:
    """History in the ``flowwatch_alert_history`` table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Clock = _utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def exists(
        self,
        user_id: str,
        location_id: str,
        return_years: int,
        within_hours: Optional[int] = None,
    ) -> bool:
        hours = within_hours if within_hours is not None else settings.dedup_window_hours
        cutoff = self.clock() - timedelta(hours=hours)
        stmt = (
            select(func.count())
            .select_from(AlertHistoryRow)
            .where(
                AlertHistoryRow.user_id == user_id,
                AlertHistoryRow.location_id == location_id,
                AlertHistoryRow.return_years == return_years,
                AlertHistoryRow.triggered_at >= cutoff,
            )
        )
        async with session_scope(self.session_factory) as db:
            count = (await db.execute(stmt)).scalar_one()
        return count > 0

    async def record(self, alert: Alert) -> None:
        """Upsert keyed by (user_id, alert_id)."""
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(AlertHistoryRow).where(
                    AlertHistoryRow.user_id == alert.user_id,
                    AlertHistoryRow.alert_id == alert.alert_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = AlertHistoryRow(user_id=alert.user_id, alert_id=alert.alert_id)
                db.add(row)
            _apply(row, alert)
        logger.debug(
            "alert_recorded",
            user_id=alert.user_id,
            alert_id=alert.alert_id,
            sent=alert.sent,
        )

    async def recent(self, user_id: str, limit: int = 50) -> list[Alert]:
        stmt = (
            select(AlertHistoryRow)
            .where(AlertHistoryRow.user_id == user_id)
            .order_by(AlertHistoryRow.triggered_at.desc())
            .limit(limit)
        )
        async with session_scope(self.session_factory) as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [_row_to_alert(r) for r in rows]
