"""Root API router with the versioned prefix and middleware registration."""

from fastapi import APIRouter, FastAPI

from poll_geo_api.api.middleware import RateLimitMiddleware, setup_cors
from poll_geo_api.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included.

    Args:
        settings: Application settings.

    Returns:
        Configured API router.
    """
    from poll_geo_api.api.v1.aggregates import aggregates_router
    from poll_geo_api.api.v1.health import router as health_router
    from poll_geo_api.api.v1.rollups import rollups_router
    from poll_geo_api.api.v1.submissions import submissions_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(health_router)
    root_router.include_router(aggregates_router)
    root_router.include_router(submissions_router)
    root_router.include_router(rollups_router)

    return root_router


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI app."""
    setup_cors(app, settings)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxy_headers=settings.trusted_proxy_header_list,
    )
