"""
Monitoring Orchestrator: one full monitoring pass.

Resolves candidate users, evaluates every (user, monitored location) unit
on a bounded pool, then hands the resulting alerts to the dispatcher.

Error isolation: a unit that raises becomes a ``failed`` unit result and
never stops its siblings. Only a failure to enumerate users fails the run.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

import structlog

from flowwatch.alerting.dispatcher import NotificationDispatcher
from flowwatch.alerting.evaluator import evaluate
from flowwatch.alerting.preferences import PreferenceResolver
from flowwatch.cache.providers import ForecastCacheProvider, ThresholdCacheProvider
from flowwatch.config import settings
from flowwatch.exceptions import MissingDataError
from flowwatch.schemas import (
    Alert,
    DeliveryStatus,
    NotificationPreferences,
    RunSummary,
    UnitResult,
    UnitStatus,
    UserResult,
)
from flowwatch.sources.locations import LocationDirectory, resolve_location

logger = structlog.get_logger(__name__)

ALL_USERS = "all"


class MonitoringOrchestrator:
    def __init__(
        self,
        resolver: PreferenceResolver,
        forecasts: ForecastCacheProvider,
        thresholds: ThresholdCacheProvider,
        dispatcher: NotificationDispatcher,
        locations: Optional[LocationDirectory] = None,
        max_concurrency: int | None = None,
    ):
        self.resolver = resolver
        self.forecasts = forecasts
        self.thresholds = thresholds
        self.dispatcher = dispatcher
        self.locations = locations
        self.max_concurrency = max_concurrency or settings.monitor_max_concurrency

    async def run(self, target: str = ALL_USERS, now: datetime | None = None) -> RunSummary:
        """
        Run one monitoring pass for every active user or a single user id.

        Raises:
            ResolutionError: the preference store could not be read.
        """
        started = now or datetime.now(timezone.utc)
        summary = RunSummary(target=target, started_at=started)
        log = logger.bind(target=target)
        log.info("monitoring_run_started")

        users = await self._resolve_users(target, started)
        summary.users_processed = len(users)
        if not users:
            summary.finished_at = datetime.now(timezone.utc)
            log.info("monitoring_run_completed", users_processed=0, alerts_generated=0,
                     notifications_sent=0)
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = {prefs.user_id: UserResult(user_id=prefs.user_id) for prefs in users}

        units = [
            (prefs, location_id)
            for prefs in users
            for location_id in sorted(prefs.monitored_location_ids)
        ]
        outcomes = await asyncio.gather(
            *(self._run_unit(semaphore, prefs, loc, started) for prefs, loc in units)
        )

        alerts: list[Alert] = []
        for unit_result, unit_alerts in outcomes:
            user_result = results[unit_result.user_id]
            user_result.units.append(unit_result)
            user_result.alerts_generated += len(unit_alerts)
            alerts.extend(unit_alerts)

        await self._dispatch_all(semaphore, alerts, results)

        summary.results = list(results.values())
        summary.alerts_generated = len(alerts)
        summary.notifications_sent = sum(r.sent for r in summary.results)
        summary.finished_at = datetime.now(timezone.utc)

        log.info(
            "monitoring_run_completed",
            users_processed=summary.users_processed,
            units=len(units),
            units_skipped=sum(
                1 for r, _ in outcomes if r.status == UnitStatus.SKIPPED
            ),
            units_failed=sum(
                1 for r, _ in outcomes if r.status == UnitStatus.FAILED
            ),
            alerts_generated=summary.alerts_generated,
            notifications_sent=summary.notifications_sent,
            duration_ms=int((summary.finished_at - started).total_seconds() * 1000),
        )
        return summary

    async def _resolve_users(
        self, target: str, now: datetime
    ) -> list[NotificationPreferences]:
        if target == ALL_USERS:
            return await self.resolver.active_users(now)
        prefs = await self.resolver.get(target)
        if prefs is None or not self.resolver.is_candidate(prefs, now):
            logger.info("user_not_candidate", user_id=target)
            return []
        return [prefs]

    # ── Units ───────────────────────────────────────────────────────────

    async def _run_unit(
        self,
        semaphore: asyncio.Semaphore,
        prefs: NotificationPreferences,
        location_id: str,
        triggered_at: datetime,
    ) -> tuple[UnitResult, list[Alert]]:
        async with semaphore:
            try:
                alerts = await self._evaluate_unit(prefs, location_id, triggered_at)
            except MissingDataError as e:
                logger.info(
                    "unit_skipped", user_id=prefs.user_id, location_id=location_id, reason=e.what
                )
                return UnitResult(
                    user_id=prefs.user_id,
                    location_id=location_id,
                    status=UnitStatus.SKIPPED,
                    detail=str(e),
                ), []
            except Exception as e:
                logger.error(
                    "unit_failed",
                    user_id=prefs.user_id,
                    location_id=location_id,
                    error=str(e),
                    exc_info=True,
                )
                return UnitResult(
                    user_id=prefs.user_id,
                    location_id=location_id,
                    status=UnitStatus.FAILED,
                    detail=f"{type(e).__name__}: {e}",
                ), []

        return UnitResult(
            user_id=prefs.user_id,
            location_id=location_id,
            status=UnitStatus.OK,
            alerts_found=len(alerts),
        ), alerts

    async def _evaluate_unit(
        self,
        prefs: NotificationPreferences,
        location_id: str,
        triggered_at: datetime,
    ) -> list[Alert]:
        forecast = await self.forecasts.get(location_id)
        if forecast is None:
            raise MissingDataError(location_id, "forecast")
        thresholds = await self.thresholds.get(location_id)
        if thresholds is None:
            raise MissingDataError(location_id, "thresholds")
        location = await resolve_location(self.locations, location_id)

        return evaluate(
            forecast.points,
            thresholds,
            user_id=prefs.user_id,
            location_id=location_id,
            location_name=location.display_name,
            ranges=prefs.ranges,
            triggered_at=triggered_at,
        )

    # ── Dispatch ────────────────────────────────────────────────────────

    async def _dispatch_all(
        self,
        semaphore: asyncio.Semaphore,
        alerts: list[Alert],
        results: dict[str, UserResult],
    ) -> None:
        """Same dedupe key → sequential in forecast-time order; keys run concurrently."""
        groups: dict[tuple, list[Alert]] = defaultdict(list)
        for alert in alerts:
            groups[alert.dedupe_key].append(alert)

        async def _run_group(group: list[Alert]) -> list[tuple[Alert, DeliveryStatus]]:
            out = []
            async with semaphore:
                for alert in sorted(group, key=lambda a: a.forecast_time):
                    try:
                        status = await self.dispatcher.deliver(alert)
                    except Exception as e:
                        logger.error("dispatch_failed", alert_id=alert.alert_id, error=str(e))
                        status = DeliveryStatus.FAILED
                    out.append((alert, status))
            return out

        for group_outcome in await asyncio.gather(*(_run_group(g) for g in groups.values())):
            for alert, status in group_outcome:
                user_result = results[alert.user_id]
                if status == DeliveryStatus.SENT:
                    user_result.sent += 1
                elif status == DeliveryStatus.SUPPRESSED:
                    user_result.suppressed += 1
                else:
                    user_result.failed += 1
