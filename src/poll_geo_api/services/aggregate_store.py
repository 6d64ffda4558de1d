"""Aggregate store: increment-only writes and batched reads of aggregate rows.

Counters are changed exclusively through ``INSERT ... ON CONFLICT DO UPDATE``
statements that add to the stored value, so concurrent writers touching the
same cell commute. Rows whose counts return to zero are deleted: a missing
row always means zero.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.database import upsert_for
from poll_geo_api.lib.aggregation import CellAggregate, CellDelta, Counters
from poll_geo_api.lib.errors import BatchSizeExceededError
from poll_geo_api.models.aggregate_cell import AggregateCell, AggregateCounter

MAX_FETCH_BATCH = 1000

_CELL_KEY = ["poll_id", "resolution", "cell_id"]
_COUNTER_KEY = ["poll_id", "resolution", "cell_id", "question_id"]


def _counter_row(counters: Counters) -> dict[str, Decimal | int]:
    return {
        "value_sum": counters.sum,
        "pos_sum": counters.pos_sum,
        "neg_sum": counters.neg_sum,
        "pos_count": counters.pos_count,
        "neg_count": counters.neg_count,
        "zero_count": counters.zero_count,
    }


def _to_counters(row: AggregateCounter) -> Counters:
    return Counters(
        sum=row.value_sum,
        pos_sum=row.pos_sum,
        neg_sum=row.neg_sum,
        pos_count=row.pos_count,
        neg_count=row.neg_count,
        zero_count=row.zero_count,
    )


async def apply_cell_delta(
    session: AsyncSession,
    poll_id: str,
    resolution: int,
    delta: CellDelta,
    *,
    updated_at: datetime | None = None,
) -> None:
    """Add a delta to one cell's respondent total and question counters.

    Does not commit; the caller owns the transaction.

    Args:
        session: Async database session.
        poll_id: Poll the cell belongs to.
        resolution: Layer resolution of the cell.
        delta: Respondent and per-question increments.
        updated_at: Timestamp written to the cell row.
    """
    if delta.is_noop():
        return
    insert_ = upsert_for(session)
    stamp = updated_at or datetime.now(UTC)

    cell_stmt = insert_(AggregateCell).values(
        poll_id=poll_id,
        resolution=resolution,
        cell_id=delta.cell_id,
        total_respondents=delta.respondent_delta,
        updated_at=stamp,
    )
    cell_stmt = cell_stmt.on_conflict_do_update(
        index_elements=_CELL_KEY,
        set_={
            "total_respondents": AggregateCell.total_respondents + cell_stmt.excluded.total_respondents,
            "updated_at": cell_stmt.excluded.updated_at,
        },
    )
    await session.execute(cell_stmt)

    for question_id, counters in sorted(delta.counters.items()):
        counter_stmt = insert_(AggregateCounter).values(
            poll_id=poll_id,
            resolution=resolution,
            cell_id=delta.cell_id,
            question_id=question_id,
            **_counter_row(counters),
        )
        counter_stmt = counter_stmt.on_conflict_do_update(
            index_elements=_COUNTER_KEY,
            set_={
                column: getattr(AggregateCounter, column) + getattr(counter_stmt.excluded, column)
                for column in _counter_row(counters)
            },
        )
        await session.execute(counter_stmt)

    # Drop rows that no longer have any contributor
    await session.execute(
        delete(AggregateCounter).where(
            AggregateCounter.poll_id == poll_id,
            AggregateCounter.resolution == resolution,
            AggregateCounter.cell_id == delta.cell_id,
            AggregateCounter.pos_count == 0,
            AggregateCounter.neg_count == 0,
            AggregateCounter.zero_count == 0,
        )
    )
    await session.execute(
        delete(AggregateCell).where(
            AggregateCell.poll_id == poll_id,
            AggregateCell.resolution == resolution,
            AggregateCell.cell_id == delta.cell_id,
            AggregateCell.total_respondents == 0,
        )
    )


async def fetch_counters(
    session: AsyncSession,
    poll_id: str,
    resolution: int,
    question_id: str,
    cell_ids: Sequence[str],
    *,
    limit: int = MAX_FETCH_BATCH,
) -> dict[str, Counters]:
    """Read one question's counters for a batch of cells.

    Cells with no stored counters are absent from the result.

    Raises:
        BatchSizeExceededError: If more than ``limit`` cell ids are requested.
    """
    if len(cell_ids) > limit:
        raise BatchSizeExceededError(len(cell_ids), limit)
    if not cell_ids:
        return {}
    result = await session.execute(
        select(AggregateCounter)
        .where(
            AggregateCounter.poll_id == poll_id,
            AggregateCounter.resolution == resolution,
            AggregateCounter.question_id == question_id,
            AggregateCounter.cell_id.in_(list(cell_ids)),
        )
        .execution_options(populate_existing=True)
    )
    return {row.cell_id: _to_counters(row) for row in result.scalars().all()}


async def fetch_question_layer(
    session: AsyncSession,
    poll_id: str,
    resolution: int,
    question_id: str,
) -> dict[str, Counters]:
    """Every stored counter of one question at one resolution."""
    result = await session.execute(
        select(AggregateCounter)
        .where(
            AggregateCounter.poll_id == poll_id,
            AggregateCounter.resolution == resolution,
            AggregateCounter.question_id == question_id,
        )
        .order_by(AggregateCounter.cell_id)
        .execution_options(populate_existing=True)
    )
    return {row.cell_id: _to_counters(row) for row in result.scalars().all()}


async def count_cells(session: AsyncSession, poll_id: str, resolution: int) -> int:
    """Number of populated cells in one layer."""
    result = await session.execute(
        select(func.count())
        .select_from(AggregateCell)
        .where(AggregateCell.poll_id == poll_id, AggregateCell.resolution == resolution)
    )
    return result.scalar_one()


async def fetch_layer(session: AsyncSession, poll_id: str, resolution: int) -> list[CellAggregate]:
    """Load a complete layer, ordered by cell id, with per-question counters."""
    cells_result = await session.execute(
        select(AggregateCell)
        .where(AggregateCell.poll_id == poll_id, AggregateCell.resolution == resolution)
        .order_by(AggregateCell.cell_id)
        .execution_options(populate_existing=True)
    )
    layer = {
        row.cell_id: CellAggregate(
            cell_id=row.cell_id,
            resolution=resolution,
            total_respondents=row.total_respondents,
            updated_at=row.updated_at,
        )
        for row in cells_result.scalars().all()
    }

    counters_result = await session.execute(
        select(AggregateCounter)
        .where(AggregateCounter.poll_id == poll_id, AggregateCounter.resolution == resolution)
        .order_by(AggregateCounter.cell_id, AggregateCounter.question_id)
        .execution_options(populate_existing=True)
    )
    for row in counters_result.scalars().all():
        cell = layer.setdefault(row.cell_id, CellAggregate(cell_id=row.cell_id, resolution=resolution))
        cell.stats[row.question_id] = _to_counters(row)

    return [layer[cell_id] for cell_id in sorted(layer)]


async def replace_layer(
    session: AsyncSession,
    poll_id: str,
    resolution: int,
    cells: Sequence[CellAggregate],
    *,
    default_updated_at: datetime,
) -> int:
    """Replace every row of one layer with freshly computed aggregates.

    Does not commit; the caller owns the transaction.

    Returns:
        Number of cell rows written.
    """
    await session.execute(
        delete(AggregateCounter).where(
            AggregateCounter.poll_id == poll_id,
            AggregateCounter.resolution == resolution,
        )
    )
    await session.execute(
        delete(AggregateCell).where(
            AggregateCell.poll_id == poll_id,
            AggregateCell.resolution == resolution,
        )
    )

    cell_rows = [
        {
            "poll_id": poll_id,
            "resolution": resolution,
            "cell_id": cell.cell_id,
            "total_respondents": cell.total_respondents,
            "updated_at": cell.updated_at or default_updated_at,
        }
        for cell in cells
    ]
    counter_rows = [
        {
            "poll_id": poll_id,
            "resolution": resolution,
            "cell_id": cell.cell_id,
            "question_id": question_id,
            **_counter_row(counters),
        }
        for cell in cells
        for question_id, counters in cell.stats.items()
    ]
    if cell_rows:
        await session.execute(insert(AggregateCell), cell_rows)
    if counter_rows:
        await session.execute(insert(AggregateCounter), counter_rows)
    return len(cell_rows)
