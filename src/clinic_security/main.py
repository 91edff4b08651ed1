"""FastAPI application factory.

Creates the FastAPI app with lifespan management, exception handlers,
and OpenAPI metadata.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from clinic_security import __version__
from clinic_security.core.config import get_settings
from clinic_security.core.database import dispose_engine, get_session_factory, init_engine
from clinic_security.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle.

    On startup: init engine, install audit log guards, start the baseline
    recalculation scheduler. On shutdown: stop the scheduler, dispose engine.
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    engine = init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    if settings.audit_immutability_on_startup:
        from clinic_security.services.audit_immutability import initialize_audit_log_immutability

        await initialize_audit_log_immutability(engine)

    scheduler = None
    if settings.baseline_recalc_enabled:
        from clinic_security.core.background import BaselineRecalculationScheduler
        from clinic_security.core.dependencies import get_geolocator
        from clinic_security.services.baseline_service import recalculate_all_baselines

        geolocator = get_geolocator(settings)
        session_factory = get_session_factory()

        async def _sweep() -> dict:
            return await recalculate_all_baselines(session_factory, geolocator, settings=settings)

        scheduler = BaselineRecalculationScheduler(_sweep, settings.baseline_recalc_cron)
        scheduler.start()
        app.state.baseline_scheduler = scheduler
        logger.info(
            f"Baseline recalculation scheduled (cron={settings.baseline_recalc_cron!r}, next={scheduler.next_run()})"
        )

    yield

    if scheduler is not None:
        await scheduler.stop()

    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Clinic Security API",
        description="Tamper-evident audit trail and behavioral anomaly detection for clinical operations",
        version=__version__,
        lifespan=lifespan,
    )

    from clinic_security.api.errors import register_exception_handlers
    from clinic_security.api.router import create_router, setup_middleware

    register_exception_handlers(app, settings)
    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
