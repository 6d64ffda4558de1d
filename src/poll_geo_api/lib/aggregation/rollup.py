"""From-scratch accumulation of multi-resolution aggregates.

Feed every submitted response of a poll to a ``RollupAccumulator`` and
read back complete layers, one per configured resolution.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from poll_geo_api.lib.aggregation.counters import ZERO_COUNTERS, Counters, coerce_value, counters_for_value
from poll_geo_api.lib.aggregation.snapshot import CellLocation, resolve_finest_cell
from poll_geo_api.lib.spatial import ancestor_at


@dataclass
class CellAggregate:
    """Materialized aggregate for one (resolution, cell)."""

    cell_id: str
    resolution: int
    stats: dict[str, Counters] = field(default_factory=dict)
    total_respondents: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ResponseRecord:
    """One stored answer as read during a rollup scan."""

    user_id: str
    question_id: str
    value: Decimal
    location: CellLocation | None = None
    latitude: float | None = None
    longitude: float | None = None
    updated_at: datetime | None = None


@dataclass
class _CellState:
    stats: dict[str, Counters] = field(default_factory=dict)
    respondents: set[str] = field(default_factory=set)
    updated_at: datetime | None = None


class RollupAccumulator:
    """Accumulates counters and respondent sets for every layer of one poll."""

    def __init__(self, resolutions: list[int]) -> None:
        if not resolutions:
            msg = "At least one resolution is required"
            raise ValueError(msg)
        self.resolutions = sorted(set(resolutions), reverse=True)
        self.base_resolution = self.resolutions[0]
        self._layers: dict[int, dict[str, _CellState]] = {r: {} for r in self.resolutions}
        self.responses_seen = 0
        self.responses_skipped = 0

    def add(self, record: ResponseRecord) -> bool:
        """Add one response to every layer its cell reaches.

        Returns:
            False when the response has no resolvable location and was skipped.
        """
        self.responses_seen += 1
        finest = resolve_finest_cell(record.location, record.latitude, record.longitude, self.base_resolution)
        if finest is None:
            self.responses_skipped += 1
            return False

        contribution = counters_for_value(coerce_value(record.value))
        for resolution in self.resolutions:
            if resolution > finest.resolution:
                continue
            cell_id = ancestor_at(finest.cell_id, finest.resolution, resolution)
            state = self._layers[resolution].setdefault(cell_id, _CellState())
            state.stats[record.question_id] = state.stats.get(record.question_id, ZERO_COUNTERS) + contribution
            state.respondents.add(record.user_id)
            if record.updated_at is not None and (state.updated_at is None or record.updated_at > state.updated_at):
                state.updated_at = record.updated_at
        return True

    def layer(self, resolution: int) -> list[CellAggregate]:
        """Completed aggregates for one resolution, ordered by cell id."""
        cells = self._layers[resolution]
        return [
            CellAggregate(
                cell_id=cell_id,
                resolution=resolution,
                stats=dict(sorted(state.stats.items())),
                total_respondents=len(state.respondents),
                updated_at=state.updated_at,
            )
            for cell_id, state in sorted(cells.items())
        ]

    @property
    def respondent_count(self) -> int:
        """Distinct respondents placed in at least one cell."""
        # Respondents stamped coarser than the base only reach coarser layers
        seen: set[str] = set()
        for cells in self._layers.values():
            for state in cells.values():
                seen |= state.respondents
        return len(seen)
