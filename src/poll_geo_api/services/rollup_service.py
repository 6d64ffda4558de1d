"""Rollup service: authoritative multi-resolution rebuilds of poll aggregates.

Rebuilds recompute every layer from stored responses and replace the
materialized rows, reconciling any drift left by the incremental path.
"""

import asyncio
import hashlib
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from poll_geo_api.core.database import dialect_name
from poll_geo_api.core.logging import poll_logger
from poll_geo_api.lib.aggregation import CellLocation, ResponseRecord, RollupAccumulator
from poll_geo_api.lib.errors import InvalidArgumentError, RollupFailureError
from poll_geo_api.lib.spatial import validate_resolution
from poll_geo_api.models.poll_response import PollResponse
from poll_geo_api.services.aggregate_store import replace_layer
from poll_geo_api.services.dirty_tracker import clear_dirty, list_dirty_polls, record_failure

_poll_locks: dict[str, "_PollLock"] = {}
_ADVISORY_NAMESPACE = "poll_rollup"


@dataclass
class RollupResult:
    """Outcome of one poll rebuild."""

    poll_id: str
    started_at: datetime
    finished_at: datetime
    responses_scanned: int = 0
    responses_skipped: int = 0
    respondents: int = 0
    cells_by_resolution: dict[int, int] = field(default_factory=dict)
    cleared_dirty: bool = False
    locked_out: bool = False


@dataclass
class RollupBatchSummary:
    """Outcome of one pass over the dirty polls."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    locked_out: list[str] = field(default_factory=list)


@dataclass
class _PollLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@asynccontextmanager
async def _poll_lock(poll_id: str) -> AsyncIterator[None]:
    """Serialize rollups of one poll within this process.

    The entry is evicted once the last holder or waiter leaves.
    """
    entry = _poll_locks.get(poll_id)
    if entry is None:
        entry = _PollLock()
        _poll_locks[poll_id] = entry
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and _poll_locks.get(poll_id) is entry:
            del _poll_locks[poll_id]


def _advisory_keys(poll_id: str) -> tuple[int, int]:
    """Two signed 32-bit keys identifying a poll's rollup lock in PostgreSQL."""
    digest = hashlib.sha256(f"{_ADVISORY_NAMESPACE}:{poll_id}".encode()).digest()
    return (
        int.from_bytes(digest[:4], "big", signed=True),
        int.from_bytes(digest[4:8], "big", signed=True),
    )


async def _try_advisory_lock(session: AsyncSession, poll_id: str) -> bool:
    """Take the cross-process rollup lock of a poll for the current transaction.

    API workers, the scheduler and the CLI each run in their own process,
    so on PostgreSQL a transaction-scoped advisory lock guards the rebuild.
    It is released on commit or rollback. Other dialects rely on the
    in-process lock alone.

    Returns:
        False when another session already holds the lock.
    """
    if dialect_name(session) != "postgresql":
        return True
    key1, key2 = _advisory_keys(poll_id)
    result = await session.execute(select(func.pg_try_advisory_xact_lock(key1, key2)))
    return bool(result.scalar_one())


def _record_from_row(row: PollResponse) -> ResponseRecord:
    location = None
    if row.cell_id is not None and row.resolution is not None:
        location = CellLocation(row.cell_id, row.resolution)
    return ResponseRecord(
        user_id=row.user_id,
        question_id=row.question_id,
        value=row.value,
        location=location,
        latitude=row.latitude,
        longitude=row.longitude,
        updated_at=row.updated_at,
    )


async def _scan_submitted(session: AsyncSession, poll_id: str, batch_size: int) -> AsyncIterator[ResponseRecord]:
    """Yield every submitted response of a poll in id-ordered batches."""
    last_id = None
    while True:
        query = (
            select(PollResponse)
            .where(PollResponse.poll_id == poll_id, PollResponse.submitted.is_(True))
            .order_by(PollResponse.id)
            .limit(batch_size)
        )
        if last_id is not None:
            query = query.where(PollResponse.id > last_id)
        result = await session.execute(query)
        rows = result.scalars().all()
        if not rows:
            return
        for row in rows:
            yield _record_from_row(row)
        last_id = rows[-1].id
        if len(rows) < batch_size:
            return


async def rollup_poll(
    session: AsyncSession,
    poll_id: str,
    resolutions: Sequence[int],
    *,
    batch_size: int = 1000,
) -> RollupResult:
    """Recompute every configured layer of one poll from its stored responses.

    All layers are replaced and the dirty flag cleared in a single
    transaction. Only one rollup of a given poll runs at a time: when
    another process is already rebuilding it, nothing is done, the poll
    stays dirty and the result has ``locked_out`` set.

    Args:
        session: Async database session.
        poll_id: The poll to rebuild.
        resolutions: Layers to materialize; the finest is the base layer.
        batch_size: Rows fetched per scan query.

    Returns:
        Counts describing the rebuild.

    Raises:
        InvalidArgumentError: If the poll id or a resolution is invalid.
        RollupFailureError: If the rebuild fails; nothing is replaced.
    """
    if not poll_id:
        msg = "poll_id is required"
        raise InvalidArgumentError(msg)
    if not resolutions:
        msg = "At least one resolution is required"
        raise InvalidArgumentError(msg)
    for resolution in resolutions:
        validate_resolution(resolution)
    if batch_size < 1:
        msg = "batch_size must be positive"
        raise InvalidArgumentError(msg)

    log = poll_logger(poll_id)
    async with _poll_lock(poll_id):
        started_at = datetime.now(UTC)
        if not await _try_advisory_lock(session, poll_id):
            await session.rollback()
            log.info("Rollup skipped: poll is being rolled up by another process")
            return RollupResult(poll_id=poll_id, started_at=started_at, finished_at=started_at, locked_out=True)

        log.info("Rollup started (resolutions={})", sorted(set(resolutions), reverse=True))
        accumulator = RollupAccumulator(list(resolutions))
        result = RollupResult(poll_id=poll_id, started_at=started_at, finished_at=started_at)

        try:
            async for record in _scan_submitted(session, poll_id, batch_size):
                accumulator.add(record)

            for resolution in accumulator.resolutions:
                result.cells_by_resolution[resolution] = await replace_layer(
                    session,
                    poll_id,
                    resolution,
                    accumulator.layer(resolution),
                    default_updated_at=started_at,
                )

            result.finished_at = datetime.now(UTC)
            result.cleared_dirty = await clear_dirty(
                session, poll_id, started_at=started_at, rolled_at=result.finished_at
            )
            await session.commit()
        except Exception as exc:
            await session.rollback()
            await _store_failure(session, poll_id, str(exc) or type(exc).__name__)
            raise RollupFailureError(poll_id, str(exc) or type(exc).__name__) from exc

    result.responses_scanned = accumulator.responses_seen
    result.responses_skipped = accumulator.responses_skipped
    result.respondents = accumulator.respondent_count
    if result.responses_skipped:
        log.warning(
            "Rollup skipped {} response(s) without a resolvable cell",
            result.responses_skipped,
        )
    log.info(
        "Rollup finished: {} responses, {} respondents, cells {}",
        result.responses_scanned,
        result.respondents,
        result.cells_by_resolution,
    )
    return result


async def _store_failure(session: AsyncSession, poll_id: str, error: str) -> None:
    try:
        await record_failure(session, poll_id, error)
        await session.commit()
    except Exception:
        await session.rollback()
        logger.exception("Could not record rollup failure for poll {}", poll_id)


async def rollup_dirty_polls(
    session_factory: async_sessionmaker[AsyncSession],
    resolutions: Sequence[int],
    *,
    batch_size: int = 1000,
) -> RollupBatchSummary:
    """Roll up every dirty poll, isolating failures per poll.

    Each poll gets its own session. A failed poll stays dirty and is
    retried on the next pass. So does a poll another process is already rolling up.
    """
    async with session_factory() as session:
        poll_ids = await list_dirty_polls(session)

    summary = RollupBatchSummary()
    for poll_id in poll_ids:
        try:
            async with session_factory() as session:
                result = await rollup_poll(session, poll_id, resolutions, batch_size=batch_size)
        except Exception:
            logger.exception("Rollup failed for poll {}", poll_id)
            summary.failed.append(poll_id)
            continue
        if result.locked_out:
            summary.locked_out.append(poll_id)
        else:
            summary.succeeded.append(poll_id)

    return summary


async def rollup_scheduler_loop(
    interval: int,
    resolutions: Sequence[int],
    *,
    batch_size: int = 1000,
) -> None:
    """Background asyncio loop that periodically rolls up dirty polls.

    Args:
        interval: Seconds between passes.
        resolutions: Layers to materialize.
        batch_size: Rows fetched per scan query.
    """
    from poll_geo_api.core.database import get_session_factory

    logger.info("Rollup scheduler started (interval={}s)", interval)

    while True:
        try:
            await asyncio.sleep(interval)
            summary = await rollup_dirty_polls(get_session_factory(), resolutions, batch_size=batch_size)
            if summary.succeeded or summary.failed or summary.locked_out:
                logger.info(
                    "Rollup pass complete: {} succeeded, {} failed, {} locked out",
                    len(summary.succeeded),
                    len(summary.failed),
                    len(summary.locked_out),
                )
        except asyncio.CancelledError:
            logger.info("Rollup scheduler cancelled")
            break
        except Exception:
            logger.exception("Rollup scheduler error")
