"""
Tests for the periodic trigger.
"""

import pytest

from flowwatch.exceptions import ResolutionError
from flowwatch.monitoring.scheduler import MonitoringScheduler
from flowwatch.schemas import RunSummary


class StubOrchestrator:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def run(self, target: str = "all") -> RunSummary:
        self.calls += 1
        if self.error:
            raise self.error
        return RunSummary(target=target)


@pytest.mark.asyncio
async def test_run_monitoring_targets_all():
    orchestrator = StubOrchestrator()
    summary = await MonitoringScheduler(orchestrator, interval_minutes=30).run_monitoring()
    assert summary.target == "all"
    assert orchestrator.calls == 1


@pytest.mark.asyncio
async def test_failed_run_is_logged_not_raised():
    orchestrator = StubOrchestrator(error=ResolutionError("db down"))
    assert await MonitoringScheduler(orchestrator).run_monitoring() is None


@pytest.mark.asyncio
async def test_job_registered_single_instance():
    scheduler = MonitoringScheduler(StubOrchestrator(), interval_minutes=15)
    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("monitor_favorites")
        assert job is not None
        assert job.max_instances == 1
        assert job.trigger.interval.total_seconds() == 15 * 60
    finally:
        scheduler.stop()
