"""Aggregation library: public API for sign-bucketed poll aggregates.

Provides per-question counters, old/new deltas, transition planning for
incremental updates, and from-scratch multi-resolution accumulation.
"""

from poll_geo_api.lib.aggregation.counters import (
    Bucket,
    Counters,
    apply_delta,
    classify,
    coerce_value,
    counters_for_value,
    counters_from_answers,
    delta_between,
    negate,
)
from poll_geo_api.lib.aggregation.geojson import aggregate_bbox, build_feature_collection, value_domain
from poll_geo_api.lib.aggregation.rollup import CellAggregate, ResponseRecord, RollupAccumulator
from poll_geo_api.lib.aggregation.snapshot import (
    CellLocation,
    RespondentSnapshot,
    normalize_answers,
    resolve_base_cell,
    resolve_finest_cell,
)
from poll_geo_api.lib.aggregation.transitions import CellDelta, TransitionKind, TransitionPlan, plan_transition

__all__ = [
    "Bucket",
    "CellAggregate",
    "CellDelta",
    "CellLocation",
    "Counters",
    "RespondentSnapshot",
    "ResponseRecord",
    "RollupAccumulator",
    "TransitionKind",
    "TransitionPlan",
    "aggregate_bbox",
    "apply_delta",
    "build_feature_collection",
    "classify",
    "coerce_value",
    "counters_for_value",
    "counters_from_answers",
    "delta_between",
    "negate",
    "normalize_answers",
    "plan_transition",
    "resolve_base_cell",
    "resolve_finest_cell",
    "value_domain",
]
