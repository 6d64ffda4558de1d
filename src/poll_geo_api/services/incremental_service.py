"""Incremental aggregation: keep the base layer current on every response write."""

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.config import Settings
from poll_geo_api.core.logging import poll_logger
from poll_geo_api.lib.aggregation import RespondentSnapshot, TransitionPlan, plan_transition
from poll_geo_api.lib.errors import InvalidArgumentError, UnresolvableLocationError
from poll_geo_api.services.aggregate_store import apply_cell_delta
from poll_geo_api.services.dirty_tracker import mark_dirty


async def on_response_written(
    session: AsyncSession,
    before: RespondentSnapshot | None,
    after: RespondentSnapshot | None,
    settings: Settings,
) -> TransitionPlan:
    """Apply the base-layer deltas for one respondent write and mark the poll dirty.

    All increments and the dirty flag commit together; on failure nothing is
    applied and the error propagates.

    Args:
        session: Async database session.
        before: Snapshot before the write, or None if the respondent had no responses.
        after: Snapshot after the write, or None if the responses were deleted.
        settings: Application settings (base resolution).

    Returns:
        The executed transition plan.

    Raises:
        InvalidArgumentError: If both snapshots are missing or they disagree on poll/user.
    """
    reference = after or before
    if reference is None:
        msg = "At least one of before/after is required"
        raise InvalidArgumentError(msg)
    if before is not None and after is not None and (
        before.poll_id != after.poll_id or before.user_id != after.user_id
    ):
        msg = "before and after must describe the same respondent"
        raise InvalidArgumentError(msg)

    log = poll_logger(reference.poll_id)
    base_resolution = settings.base_resolution
    plan = plan_transition(before, after, base_resolution)
    if not plan.touches_aggregates:
        return plan

    for side in plan.unresolved:
        log.warning(
            "Skipping {} side of {}: {}",
            side,
            plan.kind,
            UnresolvableLocationError(reference.poll_id, reference.user_id),
        )

    now = datetime.now(UTC)
    try:
        for operation in plan.operations:
            await apply_cell_delta(session, reference.poll_id, base_resolution, operation, updated_at=now)
        await mark_dirty(session, reference.poll_id, at=now)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    log.debug(
        "Applied {} for respondent {} ({} cell ops)",
        plan.kind,
        reference.user_id,
        len(plan.operations),
    )
    return plan
