"""Range query service: read materialized aggregates for a map viewport."""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.config import Settings
from poll_geo_api.lib.aggregation import Counters
from poll_geo_api.lib.errors import InvalidArgumentError
from poll_geo_api.lib.spatial import BoundingBox, covering_cells, estimate_cell_count, validate_resolution
from poll_geo_api.services.aggregate_store import count_cells, fetch_counters, fetch_question_layer


@dataclass(frozen=True)
class AggregateValue:
    """One cell's aggregate value for the queried question."""

    cell_id: str
    sum: float


def parse_bounds(
    west: float | None,
    south: float | None,
    east: float | None,
    north: float | None,
) -> BoundingBox | None:
    """Build a bounding box from optional query parameters.

    Returns:
        None when no bound is given.

    Raises:
        InvalidArgumentError: If only some bounds are given or they are malformed.
    """
    bounds = (west, south, east, north)
    if all(b is None for b in bounds):
        return None
    if any(b is None for b in bounds):
        msg = "Bounds must include all of west, south, east and north"
        raise InvalidArgumentError(msg)
    return BoundingBox(west=west, south=south, east=east, north=north)


async def query_aggregates(
    session: AsyncSession,
    poll_id: str,
    question_id: str,
    resolution: int,
    bbox: BoundingBox | None,
    settings: Settings,
) -> list[AggregateValue]:
    """Return ``(cell_id, sum)`` for every populated cell in the requested area.

    Args:
        session: Async database session.
        poll_id: Poll to read.
        question_id: Question whose sum is returned.
        resolution: Layer to read.
        bbox: Viewport rectangle, or None for the whole layer.
        settings: Query limits.

    Returns:
        Values sorted by cell id; cells without counters for the question are omitted.

    Raises:
        InvalidArgumentError: If an id is missing, the resolution is out of
            range or the request covers too many cells.
    """
    if not poll_id:
        msg = "poll_id is required"
        raise InvalidArgumentError(msg)
    if not question_id:
        msg = "question_id is required"
        raise InvalidArgumentError(msg)
    validate_resolution(resolution)

    counters: dict[str, Counters]
    if bbox is None:
        populated = await count_cells(session, poll_id, resolution)
        if populated > settings.unbounded_query_max_cells:
            msg = (
                f"Poll {poll_id} has {populated} cells at resolution {resolution}; "
                f"supply bounds or a coarser resolution (limit {settings.unbounded_query_max_cells})"
            )
            raise InvalidArgumentError(msg)
        counters = await fetch_question_layer(session, poll_id, resolution, question_id)
    else:
        estimated = estimate_cell_count(bbox, resolution)
        if estimated > settings.query_max_cells:
            msg = (
                f"Requested area needs about {estimated} cells at resolution {resolution} "
                f"(limit {settings.query_max_cells}); use a coarser resolution or a smaller area"
            )
            raise InvalidArgumentError(msg)
        cell_ids = sorted(covering_cells(bbox, resolution))
        if len(cell_ids) > settings.query_max_cells:
            msg = f"Requested area covers {len(cell_ids)} cells (limit {settings.query_max_cells})"
            raise InvalidArgumentError(msg)

        counters = {}
        batch_size = settings.query_batch_size
        for start in range(0, len(cell_ids), batch_size):
            chunk = cell_ids[start : start + batch_size]
            counters.update(
                await fetch_counters(session, poll_id, resolution, question_id, chunk, limit=batch_size)
            )
        logger.debug(
            "Aggregate query poll={} question={} res={} scanned {} cells, {} populated",
            poll_id,
            question_id,
            resolution,
            len(cell_ids),
            len(counters),
        )

    return [AggregateValue(cell_id=cell_id, sum=float(value.sum)) for cell_id, value in sorted(counters.items())]
