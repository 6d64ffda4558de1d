"""Plan the base-layer counter changes caused by one response write.

The plan is pure: it names which cells change and by how much, and the
service layer applies each operation with atomic increments.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from poll_geo_api.lib.aggregation.counters import Counters, counters_from_answers, delta_between, negate
from poll_geo_api.lib.aggregation.snapshot import RespondentSnapshot, resolve_base_cell


class TransitionKind(StrEnum):
    """How a respondent's counted state changed."""

    NOOP = "noop"
    NEWLY_COUNTED = "newly_counted"
    NEWLY_UNCOUNTED = "newly_uncounted"
    EDITED = "edited"
    MOVED = "moved"


@dataclass(frozen=True)
class CellDelta:
    """One increment to apply to a single base-layer cell."""

    cell_id: str
    counters: dict[str, Counters]
    respondent_delta: int

    def is_noop(self) -> bool:
        return self.respondent_delta == 0 and not self.counters


@dataclass
class TransitionPlan:
    """Operations for one write plus the sides that could not be located."""

    kind: TransitionKind
    operations: list[CellDelta] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    @property
    def touches_aggregates(self) -> bool:
        return self.kind is not TransitionKind.NOOP


def plan_transition(
    before: RespondentSnapshot | None,
    after: RespondentSnapshot | None,
    base_resolution: int,
) -> TransitionPlan:
    """Work out the base-resolution deltas for a before/after pair.

    Args:
        before: Snapshot prior to the write, or None if the respondent had none.
        after: Snapshot after the write, or None if it was deleted.
        base_resolution: Resolution of the live incremental layer.

    Returns:
        The plan. Sides whose cell cannot be resolved are listed in
        ``unresolved`` and contribute no operation.
    """
    was_counted = before is not None and before.counted
    is_counted = after is not None and after.counted
    if not was_counted and not is_counted:
        return TransitionPlan(kind=TransitionKind.NOOP)

    before_cell = resolve_base_cell(before, base_resolution) if was_counted else None
    after_cell = resolve_base_cell(after, base_resolution) if is_counted else None

    plan = TransitionPlan(kind=TransitionKind.NOOP)
    if was_counted and before_cell is None:
        plan.unresolved.append("before")
    if is_counted and after_cell is None:
        plan.unresolved.append("after")

    if is_counted and not was_counted:
        plan.kind = TransitionKind.NEWLY_COUNTED
        if after_cell is not None:
            plan.operations.append(CellDelta(after_cell, counters_from_answers(after.answers), +1))
    elif was_counted and not is_counted:
        plan.kind = TransitionKind.NEWLY_UNCOUNTED
        if before_cell is not None:
            plan.operations.append(CellDelta(before_cell, negate(counters_from_answers(before.answers)), -1))
    elif before_cell == after_cell:
        plan.kind = TransitionKind.EDITED
        if after_cell is not None:
            operation = CellDelta(after_cell, delta_between(before.answers, after.answers), 0)
            if not operation.is_noop():
                plan.operations.append(operation)
    else:
        # Moved between cells, or one side was never located
        plan.kind = TransitionKind.MOVED
        if before_cell is not None:
            plan.operations.append(CellDelta(before_cell, negate(counters_from_answers(before.answers)), -1))
        if after_cell is not None:
            plan.operations.append(CellDelta(after_cell, counters_from_answers(after.answers), +1))

    return plan
