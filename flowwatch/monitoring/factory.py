"""Wires a MonitoringOrchestrator from settings (SQL stores, cache, push backend)."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flowwatch.alerting.dispatcher import NotificationDispatcher
from flowwatch.alerting.history import SqlAlertHistory
from flowwatch.alerting.preferences import PreferenceResolver
from flowwatch.alerting.push import PushSender, build_push_sender
from flowwatch.cache.providers import ForecastCacheProvider, ThresholdCacheProvider
from flowwatch.cache.store import KeyValueStore, build_store
from flowwatch.db.stores import SqlLocationDirectory, SqlPreferenceStore, SqlPushTokenStore
from flowwatch.monitoring.orchestrator import MonitoringOrchestrator
from flowwatch.sources.nwm_client import ForecastClient, ReturnPeriodClient


def build_orchestrator(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    store: Optional[KeyValueStore] = None,
    sender: Optional[PushSender] = None,
) -> MonitoringOrchestrator:
    locations = SqlLocationDirectory(session_factory)
    store = store or build_store()

    forecast_client = ForecastClient(locations=locations)
    return_period_client = ReturnPeriodClient(locations=locations)

    return MonitoringOrchestrator(
        resolver=PreferenceResolver(SqlPreferenceStore(session_factory)),
        forecasts=ForecastCacheProvider(store, forecast_client.get_series),
        thresholds=ThresholdCacheProvider(store, return_period_client.get_return_periods),
        dispatcher=NotificationDispatcher(
            history=SqlAlertHistory(session_factory),
            tokens=SqlPushTokenStore(session_factory),
            sender=sender or build_push_sender(),
        ),
        locations=locations,
    )
