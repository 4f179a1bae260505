"""
Scheduler Entry Point: runs in a separate process.

Usage:
    python -m flowwatch.scheduler_main

This does NOT run a web server. It runs the APScheduler loop that triggers
a monitoring pass every MONITOR_INTERVAL_MINUTES.
"""

import asyncio
import signal

import structlog

from flowwatch.config import settings
from flowwatch.db.engine import close_db, get_session_factory, init_db
from flowwatch.logging_config import configure_logging
from flowwatch.monitoring.factory import build_orchestrator
from flowwatch.monitoring.scheduler import MonitoringScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    await init_db()
    orchestrator = build_orchestrator(get_session_factory())
    scheduler = MonitoringScheduler(orchestrator)

    if settings.run_on_startup:
        logger.info("running_initial_pass")
        await scheduler.run_monitoring()

    scheduler.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
