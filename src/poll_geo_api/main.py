"""FastAPI application factory.

Creates the FastAPI app with lifespan management (database engine and the
periodic rollup scheduler), exception handlers and OpenAPI metadata.
"""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from poll_geo_api import __version__
from poll_geo_api.core.config import get_settings
from poll_geo_api.core.database import dispose_engine, init_engine
from poll_geo_api.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Init engine and rollup scheduler on startup, tear both down on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)

    scheduler_task = None
    if settings.rollup_enabled:
        from poll_geo_api.services.rollup_service import rollup_scheduler_loop

        scheduler_task = asyncio.create_task(
            rollup_scheduler_loop(
                settings.rollup_interval_seconds,
                settings.aggregate_resolution_list,
                batch_size=settings.rollup_scan_batch_size,
            )
        )

    yield

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task

    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Poll Geo API",
        description="Geospatial aggregation of poll answers over H3 hexagon cells",
        version=__version__,
        lifespan=lifespan,
    )

    # Invalid bounds, resolutions and ids surface as 400
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc)},
        )

    from poll_geo_api.api.router import create_router, setup_middleware

    setup_middleware(app, settings)
    app.include_router(create_router(settings))

    return app
