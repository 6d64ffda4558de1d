"""Administrative rollup endpoints: on-demand trigger, job status, poll state."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.background import task_runner
from poll_geo_api.core.config import Settings, get_settings
from poll_geo_api.core.database import get_session_factory
from poll_geo_api.core.dependencies import get_async_session
from poll_geo_api.schemas.rollup import RollupJobResponse, RollupStateResponse, RollupTriggerResponse
from poll_geo_api.services.dirty_tracker import get_rollup_state
from poll_geo_api.services.rollup_service import rollup_poll

rollups_router = APIRouter(tags=["rollups"])


@rollups_router.post(
    "/polls/{poll_id}/rollup",
    response_model=RollupTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_rollup(
    poll_id: str,
    settings: Settings = Depends(get_settings),
) -> RollupTriggerResponse:
    """Queue an immediate rebuild of one poll's aggregates."""
    resolutions = settings.aggregate_resolution_list
    batch_size = settings.rollup_scan_batch_size

    async def _run_rollup() -> None:
        factory = get_session_factory()
        async with factory() as bg_session:
            await rollup_poll(bg_session, poll_id, resolutions, batch_size=batch_size)

    job_id = task_runner.submit_task(_run_rollup(), name=f"rollup:{poll_id}")
    return RollupTriggerResponse(job_id=job_id, poll_id=poll_id, status=str(task_runner.get_status(job_id)))


@rollups_router.get("/rollup-jobs/{job_id}", response_model=RollupJobResponse)
async def get_rollup_job(job_id: str) -> RollupJobResponse:
    """Status of a queued or finished rollup job."""
    try:
        record = task_runner.get_job(job_id)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rollup job not found") from None
    return RollupJobResponse(job_id=record.job_id, name=record.name, status=str(record.status), error=record.error)


@rollups_router.get("/polls/{poll_id}/rollup-state", response_model=RollupStateResponse)
async def get_poll_rollup_state(
    poll_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> RollupStateResponse:
    """Dirty flag and rollup timestamps of one poll."""
    state = await get_rollup_state(session, poll_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Poll has no rollup state")
    return RollupStateResponse.model_validate(state)
