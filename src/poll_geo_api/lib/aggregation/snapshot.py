"""Respondent snapshots and location resolution.

A snapshot is the state of one respondent's answers to one poll at a
point in time. The aggregation engine only ever sees the snapshot before
and after a write.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from loguru import logger

from poll_geo_api.lib.aggregation.counters import coerce_value
from poll_geo_api.lib.errors import InvalidArgumentError
from poll_geo_api.lib.spatial import ancestor_at, cell_at, cell_resolution


@dataclass(frozen=True)
class CellLocation:
    """A cell stamped on a response by the location service."""

    cell_id: str
    resolution: int


@dataclass
class RespondentSnapshot:
    """One respondent's answers to one poll."""

    poll_id: str
    user_id: str
    submitted: bool
    answers: dict[str, Decimal] = field(default_factory=dict)
    location: CellLocation | None = None
    latitude: float | None = None
    longitude: float | None = None
    updated_at: datetime | None = None

    @property
    def counted(self) -> bool:
        """Whether this snapshot contributes to aggregates.

        A respondent counts once they have submitted at least one answer.
        """
        return self.submitted and bool(self.answers)


def normalize_answers(raw: Mapping[str, Any] | None) -> dict[str, Decimal]:
    """Typed answer map with every value coerced to a finite ``Decimal``."""
    return {str(question_id): coerce_value(value) for question_id, value in (raw or {}).items()}


def resolve_finest_cell(
    location: CellLocation | None,
    latitude: float | None,
    longitude: float | None,
    base_resolution: int,
) -> CellLocation | None:
    """Resolve the finest usable cell, at most ``base_resolution``.

    The stamped cell wins when it is at least as fine as the base resolution.
    Otherwise coordinates are indexed at the base resolution. A stamp coarser
    than the base with no coordinates is returned as-is: it can still feed the
    coarser layers but not the base one.

    Returns:
        The resolved cell, or None when nothing usable is present.
    """
    stamp: CellLocation | None = None
    if location is not None:
        try:
            own_resolution = cell_resolution(location.cell_id)
            if own_resolution >= base_resolution:
                return CellLocation(ancestor_at(location.cell_id, own_resolution, base_resolution), base_resolution)
            stamp = CellLocation(location.cell_id, own_resolution)
        except InvalidArgumentError:
            logger.debug("Ignoring invalid stamped cell {}", location.cell_id)

    if latitude is not None and longitude is not None:
        try:
            return CellLocation(cell_at(latitude, longitude, base_resolution), base_resolution)
        except InvalidArgumentError:
            logger.debug("Ignoring invalid coordinates ({}, {})", latitude, longitude)

    return stamp


def resolve_base_cell(snapshot: RespondentSnapshot, base_resolution: int) -> str | None:
    """Cell id of a snapshot at exactly the base resolution, or None."""
    resolved = resolve_finest_cell(snapshot.location, snapshot.latitude, snapshot.longitude, base_resolution)
    if resolved is None or resolved.resolution != base_resolution:
        return None
    return resolved.cell_id
