"""Main FastAPI application."""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_endpoints_file, settings
from .database import async_session, close_db, init_db
from .routers import alerts_router, notifier_router, status_router
from .services.email_sender import EmailNotifier
from .services.engine import MonitorEngine
from .services.prober import ProberService
from .services.reporter import ReportService
from .services.scheduler import SchedulerService
from .services.sources import EnvConfigSource, JsonFileEndpointSource
from .services.store import SqlAlchemyStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine_from_settings() -> MonitorEngine:
    """Wire the monitor engine against the configured database and SMTP server."""
    store = SqlAlchemyStore(async_session)
    prober = ProberService(
        timeout=settings.request_timeout_seconds,
        ssl_timeout=settings.ssl_timeout_seconds,
        max_redirects=settings.max_redirects,
    )
    return MonitorEngine(
        store=store,
        endpoint_source=JsonFileEndpointSource(get_endpoints_file()),
        config_source=EnvConfigSource(),
        notifier=EmailNotifier(),
        prober=prober,
        batch_size=settings.batch_size,
        retest_delay_seconds=settings.retest_delay_seconds,
        slow_threshold_ms=settings.slow_response_ms,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    if getattr(app.state, "engine", None) is not None:
        # Engine supplied by the caller; it owns its own storage
        yield
        return

    logger.info("Starting HealthWatch")

    await init_db()
    logger.info("Database initialized")

    engine = build_engine_from_settings()
    reporter = ReportService(
        engine.store,
        engine.notifier,
        reports_dir=os.path.join(settings.data_path, "reports"),
    )
    scheduler = SchedulerService(engine, reporter, settings)
    app.state.engine = engine
    app.state.scheduler = scheduler

    scheduler.start()
    logger.info("Scheduler started")

    yield

    scheduler.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app(engine: Optional[MonitorEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="HealthWatch",
        description="Endpoint reachability, TLS certificate monitoring and alerting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(status_router)
    app.include_router(alerts_router)
    app.include_router(notifier_router)

    @app.get("/health")
    async def health_check():
        current = app.state.engine
        return {
            "status": "healthy",
            "endpoints": len(current.endpoints) if current else 0,
            "scan_in_progress": current.scan_in_progress if current else False,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
