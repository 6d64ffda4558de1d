"""Dirty tracking: which polls have writes not yet reconciled by a rollup."""

from datetime import UTC, datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.database import upsert_for
from poll_geo_api.models.poll_rollup_state import PollRollupState


async def mark_dirty(session: AsyncSession, poll_id: str, *, at: datetime | None = None) -> None:
    """Flag a poll for rollup. Idempotent; does not commit.

    Args:
        session: Async database session.
        poll_id: The poll that received a write.
        at: Time of the write; defaults to now.
    """
    insert_ = upsert_for(session)
    stmt = insert_(PollRollupState).values(
        poll_id=poll_id,
        dirty=True,
        last_submission_at=at or datetime.now(UTC),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["poll_id"],
        set_={"dirty": True, "last_submission_at": stmt.excluded.last_submission_at},
    )
    await session.execute(stmt)


async def list_dirty_polls(session: AsyncSession, *, limit: int | None = None) -> list[str]:
    """Dirty poll ids, oldest write first."""
    query = (
        select(PollRollupState.poll_id)
        .where(PollRollupState.dirty.is_(True))
        .order_by(PollRollupState.last_submission_at, PollRollupState.poll_id)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def clear_dirty(
    session: AsyncSession,
    poll_id: str,
    *,
    started_at: datetime,
    rolled_at: datetime,
) -> bool:
    """Record a successful rollup and clear the flag if nothing was written since it started.

    Does not commit; called inside the rollup transaction.

    Returns:
        True if the poll is clean afterwards.
    """
    insert_ = upsert_for(session)
    stmt = insert_(PollRollupState).values(poll_id=poll_id, dirty=False, last_rolled_at=rolled_at)
    stmt = stmt.on_conflict_do_update(
        index_elements=["poll_id"],
        set_={"last_rolled_at": stmt.excluded.last_rolled_at, "last_error": None},
    )
    await session.execute(stmt)

    await session.execute(
        update(PollRollupState)
        .where(
            PollRollupState.poll_id == poll_id,
            or_(
                PollRollupState.last_submission_at.is_(None),
                PollRollupState.last_submission_at <= started_at,
            ),
        )
        .values(dirty=False)
        .execution_options(synchronize_session=False)
    )
    state = await get_rollup_state(session, poll_id)
    return state is not None and not state.dirty


async def record_failure(session: AsyncSession, poll_id: str, error: str) -> None:
    """Store the last rollup error for a poll and keep it dirty. Does not commit."""
    insert_ = upsert_for(session)
    stmt = insert_(PollRollupState).values(poll_id=poll_id, dirty=True, last_error=error)
    stmt = stmt.on_conflict_do_update(
        index_elements=["poll_id"],
        set_={"dirty": True, "last_error": stmt.excluded.last_error},
    )
    await session.execute(stmt)


async def get_rollup_state(session: AsyncSession, poll_id: str) -> PollRollupState | None:
    """Current rollup bookkeeping for a poll, or None if it was never written."""
    result = await session.execute(
        select(PollRollupState).where(PollRollupState.poll_id == poll_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
