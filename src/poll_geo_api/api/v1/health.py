"""Health and build information endpoints."""

import subprocess
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends

from poll_geo_api import __version__
from poll_geo_api.core.config import Settings, get_settings


def _get_git_commit() -> str:
    """Resolve the current git short SHA once at import time."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],  # noqa: S603, S607
            capture_output=True,
            text=True,
            timeout=5,
            cwd=Path(__file__).resolve().parent,
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 else "unknown"


_GIT_COMMIT = _get_git_commit()

router = APIRouter(tags=["health"])


@router.get("/health", status_code=200)
async def health_check() -> dict:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/info", status_code=200)
async def info(
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict:
    """Return application version, git commit, environment and aggregate layers."""
    return {
        "version": __version__,
        "git_commit": _GIT_COMMIT,
        "environment": settings.environment,
        "resolutions": settings.aggregate_resolution_list,
        "base_resolution": settings.base_resolution,
    }
