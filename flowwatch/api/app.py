"""
FlowWatch: FastAPI Application.

Run: uvicorn flowwatch.api.app:app --host 0.0.0.0 --port 8080

  - POST /api/v1/monitoring/run  ← on-demand monitoring pass
  - GET  /health                 ← liveness
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from flowwatch.api.error_handler import ErrorHandlerMiddleware
from flowwatch.api.routers.monitoring import router as monitoring_router
from flowwatch.config import settings
from flowwatch.db.engine import close_db, get_session_factory, init_db
from flowwatch.logging_config import configure_logging
from flowwatch.monitoring.factory import build_orchestrator
from flowwatch.monitoring.orchestrator import MonitoringOrchestrator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown."""
    logger.info("flowwatch_api_starting", version=settings.app_version)
    if not settings.trigger_api_key:
        logger.warning("trigger_api_key_not_set", msg="Manual runs will be rejected")
    if getattr(app.state, "orchestrator", None) is None:
        await init_db()
        app.state.orchestrator = build_orchestrator(get_session_factory())
    yield
    await close_db()
    logger.info("flowwatch_api_shutdown")


def create_app(orchestrator: Optional[MonitoringOrchestrator] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(monitoring_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "version": settings.app_version}

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


app = create_app()
