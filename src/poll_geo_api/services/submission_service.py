"""Submission service: persist respondent answers and feed the aggregation engine.

Writes to ``poll_responses`` are committed first; base-layer aggregation
runs afterwards and its failures never fail the write.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.config import Settings
from poll_geo_api.core.database import upsert_for
from poll_geo_api.lib.aggregation import (
    CellLocation,
    RespondentSnapshot,
    TransitionKind,
    TransitionPlan,
    normalize_answers,
)
from poll_geo_api.lib.errors import InvalidArgumentError
from poll_geo_api.lib.spatial import cell_at
from poll_geo_api.models.poll_response import PollResponse
from poll_geo_api.schemas.submission import SubmissionRequest
from poll_geo_api.services.dirty_tracker import mark_dirty
from poll_geo_api.services.incremental_service import on_response_written


@dataclass
class SubmissionResult:
    """Stored snapshot after a write and what aggregation did with it."""

    snapshot: RespondentSnapshot | None
    transition: TransitionKind
    aggregated: bool


async def load_snapshot(session: AsyncSession, poll_id: str, user_id: str) -> RespondentSnapshot | None:
    """Assemble a respondent's snapshot from their stored rows.

    Returns:
        The snapshot, or None if the respondent has no stored responses.
    """
    result = await session.execute(
        select(PollResponse)
        .where(PollResponse.poll_id == poll_id, PollResponse.user_id == user_id)
        .order_by(PollResponse.question_id)
        .execution_options(populate_existing=True)
    )
    rows = result.scalars().all()
    if not rows:
        return None

    located = next((row for row in rows if row.cell_id is not None and row.resolution is not None), None)
    with_coordinates = next((row for row in rows if row.latitude is not None and row.longitude is not None), None)
    return RespondentSnapshot(
        poll_id=poll_id,
        user_id=user_id,
        submitted=all(row.submitted for row in rows),
        answers=normalize_answers({row.question_id: row.value for row in rows}),
        location=CellLocation(located.cell_id, located.resolution) if located else None,
        latitude=with_coordinates.latitude if with_coordinates else None,
        longitude=with_coordinates.longitude if with_coordinates else None,
        updated_at=max(row.updated_at for row in rows),
    )


def _stamp_location(request: SubmissionRequest, base_resolution: int) -> CellLocation | None:
    if request.cell_id is not None and request.resolution is not None:
        return CellLocation(request.cell_id, request.resolution)
    if request.latitude is not None and request.longitude is not None:
        return CellLocation(cell_at(request.latitude, request.longitude, base_resolution), base_resolution)
    return None


async def _aggregate(
    session: AsyncSession,
    before: RespondentSnapshot | None,
    after: RespondentSnapshot | None,
    poll_id: str,
    settings: Settings,
) -> TransitionPlan | None:
    """Run incremental aggregation; on failure log it and leave the poll dirty."""
    try:
        return await on_response_written(session, before, after, settings)
    except Exception:
        logger.exception("Incremental aggregation failed for poll {}", poll_id)

    try:
        await mark_dirty(session, poll_id)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception("Could not mark poll {} dirty after aggregation failure", poll_id)
    return None


def _outcome(plan: TransitionPlan | None) -> tuple[TransitionKind, bool]:
    if plan is None:
        return TransitionKind.NOOP, False
    return plan.kind, plan.touches_aggregates and not plan.unresolved


async def record_submission(
    session: AsyncSession,
    poll_id: str,
    user_id: str,
    request: SubmissionRequest,
    settings: Settings,
) -> SubmissionResult:
    """Replace a respondent's stored answers and aggregate the change.

    Args:
        session: Async database session.
        poll_id: The poll being answered.
        user_id: The respondent.
        request: Full answer set, submitted flag and location.
        settings: Application settings (base resolution).

    Returns:
        The stored snapshot and the aggregation outcome.

    Raises:
        InvalidArgumentError: If poll_id or user_id is blank.
    """
    if not poll_id or not user_id:
        msg = "poll_id and user_id are required"
        raise InvalidArgumentError(msg)

    before = await load_snapshot(session, poll_id, user_id)
    location = _stamp_location(request, settings.base_resolution)
    answers = normalize_answers(request.answers)
    now = datetime.now(UTC)

    insert_ = upsert_for(session)
    for question_id, value in sorted(answers.items()):
        stmt = insert_(PollResponse).values(
            poll_id=poll_id,
            user_id=user_id,
            question_id=question_id,
            value=value,
            submitted=request.submitted,
            cell_id=location.cell_id if location else None,
            resolution=location.resolution if location else None,
            latitude=request.latitude,
            longitude=request.longitude,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["poll_id", "user_id", "question_id"],
            set_={
                "value": stmt.excluded.value,
                "submitted": stmt.excluded.submitted,
                "cell_id": stmt.excluded.cell_id,
                "resolution": stmt.excluded.resolution,
                "latitude": stmt.excluded.latitude,
                "longitude": stmt.excluded.longitude,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)

    removed = delete(PollResponse).where(PollResponse.poll_id == poll_id, PollResponse.user_id == user_id)
    if answers:
        removed = removed.where(PollResponse.question_id.not_in(list(answers)))
    await session.execute(removed)
    await session.commit()

    after = None
    if answers:
        after = RespondentSnapshot(
            poll_id=poll_id,
            user_id=user_id,
            submitted=request.submitted,
            answers=answers,
            location=location,
            latitude=request.latitude,
            longitude=request.longitude,
            updated_at=now,
        )
    plan = await _aggregate(session, before, after, poll_id, settings)
    transition, aggregated = _outcome(plan)
    return SubmissionResult(snapshot=after, transition=transition, aggregated=aggregated)


async def withdraw_submission(
    session: AsyncSession,
    poll_id: str,
    user_id: str,
    settings: Settings,
) -> SubmissionResult | None:
    """Delete all of a respondent's answers to a poll and remove their contribution.

    Returns:
        The outcome, or None if the respondent had nothing stored.
    """
    before = await load_snapshot(session, poll_id, user_id)
    if before is None:
        return None

    await session.execute(
        delete(PollResponse).where(PollResponse.poll_id == poll_id, PollResponse.user_id == user_id)
    )
    await session.commit()

    plan = await _aggregate(session, before, None, poll_id, settings)
    transition, aggregated = _outcome(plan)
    return SubmissionResult(snapshot=None, transition=transition, aggregated=aggregated)
