"""Spatial library: public API for the H3 cell hierarchy.

Maps coordinates to cells, cells to their ancestors, and viewport
rectangles to the set of cells that cover them.
"""

from poll_geo_api.lib.spatial.indexer import (
    MAX_RESOLUTION,
    MIN_RESOLUTION,
    BoundingBox,
    ancestor_at,
    cell_at,
    cell_boundary,
    cell_resolution,
    covering_cells,
    estimate_cell_count,
    validate_cell,
    validate_resolution,
)

__all__ = [
    "MAX_RESOLUTION",
    "MIN_RESOLUTION",
    "BoundingBox",
    "ancestor_at",
    "cell_at",
    "cell_boundary",
    "cell_resolution",
    "covering_cells",
    "estimate_cell_count",
    "validate_cell",
    "validate_resolution",
]
