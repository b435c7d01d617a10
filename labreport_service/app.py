"""FastAPI entry point for the lab-report extraction service.

Endpoints:
- GET  /liveness               Health check
- GET  /readiness              DB connectivity check
- GET  /v1/processor/status    Poller status
- POST /v1/processor/trigger   Run (or join) one extraction cycle now

The poller is started in the lifespan when LAB_POLLER_ENABLED is true.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, cast

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from labreport_service.config import LAB_POLLER_ENABLED
from labreport_service.db import check_db_connection, close_pool, get_pool
from labreport_service.logging_config import generate_request_id, setup_logging
from labreport_service.models import CycleResponse, HealthResponse, SchedulerStatusResponse
from labreport_service.pipeline.wiring import ExtractionPipeline, build_pipeline
from labreport_service.worker.config import WorkerConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: init pool and poller on startup, stop both on shutdown."""
    setup_logging()
    await get_pool()

    cfg = WorkerConfig.from_env()
    cfg.validate()
    pipeline = build_pipeline(cfg)
    app.state.pipeline = pipeline
    if LAB_POLLER_ENABLED:
        pipeline.scheduler.start()
    logger.info("Lab report service started (poller=%s)", LAB_POLLER_ENABLED)
    yield
    if pipeline.scheduler.running:
        await pipeline.scheduler.stop(timeout=60)
    # A cycle outlives a cancelled poller (or comes from /trigger); it needs the pool
    await pipeline.guarded.drain(timeout=30)
    await close_pool()
    logger.info("Lab report service stopped")


app = FastAPI(
    title="Lab Report Extraction Service",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


def _get_pipeline(request: Request) -> ExtractionPipeline:
    """Dependency: the pipeline built during lifespan startup."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Processor not initialized")
    return cast(ExtractionPipeline, pipeline)


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness(request: Request) -> HealthResponse:
    """Ready when the database answers and, if enabled, the poller task is alive."""
    if not await check_db_connection():
        raise HTTPException(status_code=503, detail="Database unavailable")
    pipeline = getattr(request.app.state, "pipeline", None)
    if LAB_POLLER_ENABLED and pipeline is not None and not pipeline.scheduler.running:
        raise HTTPException(status_code=503, detail="Poller not running")
    return HealthResponse(status="ok")


# -- Processor ----------------------------------------------------------------


@app.get("/v1/processor/status", response_model=SchedulerStatusResponse)
async def processor_status(
    pipeline: Annotated[ExtractionPipeline, Depends(_get_pipeline)],
) -> SchedulerStatusResponse:
    st = pipeline.scheduler.status()
    return SchedulerStatusResponse(
        running=st.running,
        cycle_in_flight=pipeline.guarded.in_flight,
        run_count=st.run_count,
        started_at=st.started_at,
        last_run_at=st.last_run_at,
        last_delay_ms=st.last_delay_ms,
        last_error=st.last_error,
    )


@app.post("/v1/processor/trigger", response_model=CycleResponse)
@limiter.limit("10/minute")
async def trigger_cycle(
    request: Request,
    pipeline: Annotated[ExtractionPipeline, Depends(_get_pipeline)],
) -> CycleResponse:
    """Run one cycle now; joins the poller's cycle if one is in flight."""
    try:
        result = await pipeline.guarded.run_cycle()
    except Exception as e:
        logger.exception("Manually triggered cycle failed")
        raise HTTPException(status_code=503, detail="Record store unavailable") from e

    return CycleResponse(
        cycle_id=result.cycle_id,
        state=result.state.value,
        delay_ms=result.delay_ms,
        claimed=result.claimed,
        committed=result.committed,
        restored=result.restored,
        vanished=result.vanished,
        discarded_results=result.discarded_results,
    )
