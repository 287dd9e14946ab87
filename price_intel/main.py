from pathlib import Path
from contextlib import asynccontextmanager
import asyncio
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from price_intel.api.routes import health_router, pipeline_router, stats_router
from price_intel.core.config import settings
from price_intel.core.db import SessionLocal
from price_intel.core.logging import get_logger
from price_intel.services.pipeline_service import PipelineService


log = get_logger("app")

# Background task handle
_pipeline_task: Optional[asyncio.Task] = None


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


def run_pipeline_once() -> None:
    """Run the nightly job in its own session."""
    log.info("Starting scheduled pipeline run...")
    with SessionLocal() as db:
        try:
            result = PipelineService(db).run_nightly(fuel_type=settings.DEFAULT_FUEL_TYPE)
            for summary in result.summaries:
                log.info(
                    f"{summary.job}: updated={summary.updated} skipped={summary.skipped} failed={summary.failed}"
                )
            log.info(f"Scheduled pipeline completed ({'partial' if result.partial else 'success'})")
        except Exception as exc:
            log.exception(f"Scheduled pipeline failed: {exc}")


async def scheduled_pipeline_task() -> None:
    """Background task that runs the pipeline at the configured interval."""
    interval = settings.PIPELINE_INTERVAL_SECONDS
    log.info(f"Scheduled pipeline task started (interval: {interval}s)")

    while True:
        try:
            await asyncio.to_thread(run_pipeline_once)
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            log.info("Scheduled pipeline task cancelled")
            break


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _pipeline_task

    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    if settings.PIPELINE_SCHEDULE_ENABLED:
        log.info("Starting scheduled pipeline background task...")
        _pipeline_task = asyncio.create_task(scheduled_pipeline_task())
    else:
        log.info("Scheduled pipeline is disabled (PIPELINE_SCHEDULE_ENABLED=false)")

    yield

    # Shutdown
    if _pipeline_task:
        log.info("Cancelling scheduled pipeline task...")
        _pipeline_task.cancel()
        try:
            await _pipeline_task
        except asyncio.CancelledError:
            pass

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="Price Intelligence Pipeline",
    description="Supplier scrape health, price validity and regional heating-oil price stats",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    debug=settings.debug_enabled,
)


app.include_router(health_router)
app.include_router(stats_router)
app.include_router(pipeline_router)
