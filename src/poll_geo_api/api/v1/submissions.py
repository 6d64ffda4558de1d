"""Submission endpoints: the response write path that feeds aggregation."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.config import Settings, get_settings
from poll_geo_api.core.dependencies import get_async_session
from poll_geo_api.schemas.submission import SubmissionRequest, SubmissionResponse
from poll_geo_api.services.submission_service import SubmissionResult, record_submission, withdraw_submission

submissions_router = APIRouter(prefix="/polls", tags=["submissions"])


def _to_response(poll_id: str, user_id: str, result: SubmissionResult) -> SubmissionResponse:
    snapshot = result.snapshot
    return SubmissionResponse(
        poll_id=poll_id,
        user_id=user_id,
        submitted=snapshot.submitted if snapshot else False,
        answers={q: float(v) for q, v in snapshot.answers.items()} if snapshot else {},
        cell_id=snapshot.location.cell_id if snapshot and snapshot.location else None,
        resolution=snapshot.location.resolution if snapshot and snapshot.location else None,
        latitude=snapshot.latitude if snapshot else None,
        longitude=snapshot.longitude if snapshot else None,
        updated_at=snapshot.updated_at if snapshot else None,
        transition=str(result.transition),
        aggregated=result.aggregated,
    )


@submissions_router.put("/{poll_id}/submissions/{user_id}", response_model=SubmissionResponse)
async def put_submission(
    poll_id: str,
    user_id: str,
    request: SubmissionRequest,
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> SubmissionResponse:
    """Store a respondent's full answer set and update the live aggregates."""
    result = await record_submission(session, poll_id, user_id, request, settings)
    return _to_response(poll_id, user_id, result)


@submissions_router.delete("/{poll_id}/submissions/{user_id}", response_model=SubmissionResponse)
async def delete_submission(
    poll_id: str,
    user_id: str,
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> SubmissionResponse:
    """Withdraw all of a respondent's answers and remove their contribution."""
    result = await withdraw_submission(session, poll_id, user_id, settings)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    return _to_response(poll_id, user_id, result)
