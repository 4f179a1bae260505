"""
Monitoring API Endpoints.

POST /api/v1/monitoring/run: run one monitoring pass now

Requires X-API-Key (TRIGGER_API_KEY).
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from flowwatch.api.auth import require_trigger_key
from flowwatch.exceptions import ResolutionError
from flowwatch.monitoring.orchestrator import ALL_USERS, MonitoringOrchestrator
from flowwatch.schemas import RunSummary

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/monitoring",
    tags=["monitoring"],
    dependencies=[Depends(require_trigger_key)],
)


class RunRequest(BaseModel):
    target: str = Field(default=ALL_USERS, min_length=1, description='"all" or a user id')


def get_orchestrator(request: Request) -> MonitoringOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail={"error": "orchestrator_not_ready"})
    return orchestrator


@router.post(
    "/run",
    response_model=RunSummary,
    summary="Run monitoring now",
    description="Evaluate all active users (or one user) and dispatch alerts.",
)
async def run_monitoring(
    body: RunRequest,
    orchestrator: MonitoringOrchestrator = Depends(get_orchestrator),
):
    logger.info("manual_run_requested", target=body.target)
    try:
        return await orchestrator.run(body.target)
    except ResolutionError as e:
        logger.error("manual_run_unresolvable", target=body.target, error=str(e))
        raise HTTPException(
            status_code=503,
            detail={"error": "preferences_unavailable", "message": str(e)},
        )
