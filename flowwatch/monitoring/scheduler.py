"""
Monitoring Scheduler: periodic trigger for monitoring runs.

Runs in its own process (``python -m flowwatch.scheduler_main``), not inside
the API. One job, one instance at a time: a tick that fires while the
previous run is still going is skipped rather than queued.
"""

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from flowwatch.config import settings
from flowwatch.monitoring.orchestrator import ALL_USERS, MonitoringOrchestrator
from flowwatch.schemas import RunSummary

logger = structlog.get_logger(__name__)


class MonitoringScheduler:
    def __init__(
        self,
        orchestrator: MonitoringOrchestrator,
        interval_minutes: int | None = None,
    ):
        self.orchestrator = orchestrator
        self.interval_minutes = interval_minutes or settings.monitor_interval_minutes
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register the monitoring job and start the scheduler."""
        self.scheduler.add_job(
            self.run_monitoring,
            IntervalTrigger(minutes=self.interval_minutes),
            id="monitor_favorites",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("monitoring_scheduler_started", interval_minutes=self.interval_minutes)

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("monitoring_scheduler_stopped")

    async def run_monitoring(self) -> RunSummary | None:
        """One scheduled pass. Errors are logged; the next tick is the retry."""
        try:
            return await self.orchestrator.run(ALL_USERS)
        except Exception as e:
            logger.error("monitoring_run_failed", error=str(e), exc_info=True)
            return None
