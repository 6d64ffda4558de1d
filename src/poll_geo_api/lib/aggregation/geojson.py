"""GeoJSON rendering helpers for aggregate query results."""

import math
from collections.abc import Iterable
from typing import Any

from poll_geo_api.lib.spatial import cell_boundary


def build_feature_collection(aggs: Iterable[tuple[str, float]]) -> dict[str, Any]:
    """Convert ``(cell_id, sum)`` pairs into a FeatureCollection of hexagons."""
    features = []
    for cell_id, value in aggs:
        features.append(
            {
                "type": "Feature",
                "id": cell_id,
                "geometry": {"type": "Polygon", "coordinates": [cell_boundary(cell_id)]},
                "properties": {"cell_id": cell_id, "sum": value},
            }
        )
    return {"type": "FeatureCollection", "features": features}


def aggregate_bbox(feature_collection: dict[str, Any]) -> list[float] | None:
    """``[min_lng, min_lat, max_lng, max_lat]`` over all polygon rings, or None if empty."""
    min_lng = min_lat = math.inf
    max_lng = max_lat = -math.inf
    for feature in feature_collection.get("features", []):
        rings = (feature.get("geometry") or {}).get("coordinates") or [[]]
        for lng, lat in rings[0]:
            min_lng = min(min_lng, lng)
            min_lat = min(min_lat, lat)
            max_lng = max(max_lng, lng)
            max_lat = max(max_lat, lat)
    if not all(math.isfinite(v) for v in (min_lng, min_lat, max_lng, max_lat)):
        return None
    return [min_lng, min_lat, max_lng, max_lat]


def value_domain(values: Iterable[float]) -> tuple[float, float]:
    """Legend domain for a set of values.

    An empty set maps to ``(0, 1)``; a single distinct value is widened by
    one unit on each side so a color ramp still has a span.
    """
    finite = [v for v in values if math.isfinite(v)]
    if not finite:
        return 0.0, 1.0
    low, high = min(finite), max(finite)
    if low == high:
        return float(math.floor(low - 1)), float(math.ceil(high + 1))
    return float(low), float(high)
