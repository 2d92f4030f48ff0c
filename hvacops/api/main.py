"""
HVACOps API - Main Entry Point

FastAPI application for multi-site thermostat enforcement and alerting:
cron-triggered pushes, realtime entity ingestion and alert evaluation.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from hvacops import __version__
from hvacops.api.dependencies import set_shared_redis
from hvacops.api.routes import api_router
from hvacops.config import get_settings
from hvacops.models.database import close_db, get_session_maker, init_db
from hvacops.services.enforcement import AlertEvaluationJob, ThermostatEnforcer

settings = get_settings()
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# ============================================================================
# Application State
# ============================================================================


class AppState:
    """Centralized application state container."""

    def __init__(self) -> None:
        self.redis_client: redis.Redis | None = None
        self.scheduler: AsyncIOScheduler | None = None
        self.startup_time: datetime | None = None
        self.is_healthy: bool = False


app_state = AppState()


# ============================================================================
# Scheduled Jobs
# ============================================================================


async def run_thermostat_enforcement() -> None:
    enforcer = ThermostatEnforcer(
        get_session_maker(), settings, redis_client=app_state.redis_client
    )
    try:
        await enforcer.run()
    except Exception:
        logger.exception("Scheduled thermostat enforcement failed")


async def run_alert_evaluation() -> None:
    try:
        await AlertEvaluationJob(get_session_maker()).run()
    except Exception:
        logger.exception("Scheduled alert evaluation failed")


# ============================================================================
# Lifecycle Management
# ============================================================================


async def init_redis() -> redis.Redis | None:
    """Connect to Redis; ``None`` disables the per-site cycle lock."""
    try:
        redis_client = redis.from_url(
            str(settings.redis_url),
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )
        ping_result = redis_client.ping()
        if asyncio.iscoroutine(ping_result):
            await ping_result
        logger.info("Redis connection established")
        return redis_client
    except Exception as e:
        logger.warning("Redis connection failed (site locking disabled): %s", e)
        return None


def init_scheduler() -> AsyncIOScheduler:
    """Build the in-process scheduler used when no external cron is wired up."""
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )

    scheduler.add_job(
        run_thermostat_enforcement,
        IntervalTrigger(minutes=settings.enforce_interval_minutes),
        id="thermostat_enforce",
        name="Thermostat Enforcement",
        replace_existing=True,
    )

    scheduler.add_job(
        run_alert_evaluation,
        IntervalTrigger(minutes=settings.alert_interval_minutes),
        id="alerts_evaluate",
        name="Alert Evaluation",
        replace_existing=True,
    )

    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager for startup and shutdown.
    """
    logger.info("Starting %s API...", settings.app_name)

    try:
        db_url = settings.database_url
        masked = db_url.replace(settings.db_password, "***") if settings.db_password else db_url
        logger.info("Connecting to database: %s", masked)
        await init_db()

        logger.info("Connecting to Redis...")
        app_state.redis_client = await init_redis()
        set_shared_redis(app_state.redis_client)

        if settings.scheduler_enabled:
            app_state.scheduler = init_scheduler()
            app_state.scheduler.start()
            logger.info(
                "Background scheduler started with %d job(s)",
                len(app_state.scheduler.get_jobs()),
            )
    except Exception as e:
        logger.error("Startup failed: %s", e)
        app_state.is_healthy = False
        raise

    app_state.startup_time = datetime.now(UTC)
    app_state.is_healthy = True

    yield

    logger.info("Shutting down %s API...", settings.app_name)
    app_state.is_healthy = False

    if app_state.scheduler:
        logger.info("Stopping background scheduler...")
        app_state.scheduler.shutdown(wait=True)
        app_state.scheduler = None

    if app_state.redis_client:
        logger.info("Closing Redis connection...")
        set_shared_redis(None)
        await app_state.redis_client.close()
        app_state.redis_client = None

    logger.info("Closing database connections...")
    await close_db()

    logger.info("%s API shutdown complete", settings.app_name)


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title=f"{settings.app_name} API",
    description="""
    Thermostat enforcement and alerting for multi-site retail HVAC.

    ## Features

    * **Enforcement** - Cron-triggered setpoint pushes per site and zone
    * **Setpoints** - Resolved zone setpoints with their source
    * **Ingestion** - Entity value sync with realtime alert evaluation
    * **Alerts** - Periodic alert evaluation and repeat notifications
    """,
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)


# ============================================================================
# Middleware
# ============================================================================


@app.middleware("http")
async def request_logging_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Log all requests with timing and correlation IDs."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.perf_counter()

    request.state.request_id = request_id

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("Request failed: %s", e, exc_info=True)
        raise

    process_time = time.perf_counter() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time:.4f}"

    logger.info(
        "%s %s status=%d duration=%.4fs",
        request.method,
        request.url.path,
        response.status_code,
        process_time,
    )
    return response


# ============================================================================
# Route Registration
# ============================================================================

app.include_router(api_router)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/health/detailed", tags=["Health"])
async def detailed_health_check() -> dict[str, object]:
    """Component status for the database, Redis and the scheduler."""
    components: dict[str, dict[str, object]] = {}
    overall = "healthy"

    try:
        async with get_session_maker()() as db:
            await db.execute(text("SELECT 1"))
        components["database"] = {"status": "healthy"}
    except Exception as e:
        components["database"] = {"status": "unhealthy", "error": str(e)}
        overall = "degraded"

    if app_state.redis_client is None:
        components["redis"] = {"status": "not_configured"}
    else:
        try:
            ping_result = app_state.redis_client.ping()
            if asyncio.iscoroutine(ping_result):
                await ping_result
            components["redis"] = {"status": "healthy"}
        except Exception as e:
            components["redis"] = {"status": "unhealthy", "error": str(e)}
            overall = "degraded"

    if app_state.scheduler and app_state.scheduler.running:
        components["scheduler"] = {
            "status": "healthy",
            "jobs_count": len(app_state.scheduler.get_jobs()),
        }
    else:
        # External cron drives the jobs when the scheduler is disabled
        components["scheduler"] = {"status": "disabled"}

    uptime = None
    if app_state.startup_time:
        uptime = (datetime.now(UTC) - app_state.startup_time).total_seconds()

    return {
        "status": overall,
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": uptime,
        "components": components,
    }


@app.get("/health/ready", tags=["Health"], response_model=None)
async def readiness_check() -> Response:
    """Kubernetes readiness check."""
    if not app_state.is_healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready"},
        )
    return JSONResponse(content={"status": "ready"})


@app.get("/health/live", tags=["Health"])
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness check."""
    return {"status": "alive"}


# ============================================================================
# Exception Handlers
# ============================================================================


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": 500,
                "message": "An internal error occurred" if not settings.debug else str(exc),
                "request_id": getattr(request.state, "request_id", None),
            },
        },
    )


# ============================================================================
# CLI Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hvacops.api.main:app",
        host=settings.host,
        port=settings.port,
        loop="asyncio",
        reload=settings.debug,
        log_level="debug" if settings.debug else settings.log_level,
        access_log=True,
    )
