from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from yumrun_api.core.settings import settings
from yumrun_api.db.session import async_session
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    schedule_path = Path(settings.job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = _schedule_path()
    job_scheduler = JobScheduler(session_factory=_session_factory, config_path=schedule_path)
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.opt(exception=exc).error("Job scheduler failed to start", schedule_path=str(schedule_path))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Job scheduler disabled",
            reason="job_scheduler_enabled is false; run tooling/scripts/process_expired_points.py from cron instead",
        )

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the YumRun FastAPI service."""
    configure_logging(
        service_name="yumrun-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        json_output=settings.log_json,
    )

    app = FastAPI(
        title=settings.app_name,
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="yumrun-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, object]:
        return {
            "success": True,
            "data": {
                "status": "ok",
                "environment": settings.environment,
                "version": APP_VERSION,
            },
        }

    return app
