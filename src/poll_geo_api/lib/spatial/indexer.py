"""H3 spatial indexer: maps coordinates and viewports onto hexagonal cells.

Resolutions run 0 (coarsest) to 15 (finest). Every function here is pure
and deterministic; nothing touches the database.
"""

import math
from dataclasses import dataclass

import h3
from shapely.geometry import Polygon, box

from poll_geo_api.lib.errors import InvalidArgumentError, InvalidResolutionError

MIN_RESOLUTION = 0
MAX_RESOLUTION = 15

_KM_PER_DEGREE = 111.32
# A hexagon's circumradius equals its edge length; pad a little beyond it
_PAD_EDGE_FACTOR = 1.5
_MAX_SLICE_DEGREES = 90.0


@dataclass(frozen=True)
class BoundingBox:
    """A WGS84 viewport rectangle in degrees."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        values = (self.west, self.south, self.east, self.north)
        if not all(math.isfinite(v) for v in values):
            msg = "Bounding box coordinates must be finite numbers"
            raise InvalidArgumentError(msg)
        if not (-180 <= self.west <= 180 and -180 <= self.east <= 180):
            msg = "west and east must be between -180 and 180"
            raise InvalidArgumentError(msg)
        if not (-90 <= self.south <= 90 and -90 <= self.north <= 90):
            msg = "south and north must be between -90 and 90"
            raise InvalidArgumentError(msg)
        if not self.west < self.east:
            msg = f"west ({self.west}) must be less than east ({self.east})"
            raise InvalidArgumentError(msg)
        if not self.south < self.north:
            msg = f"south ({self.south}) must be less than north ({self.north})"
            raise InvalidArgumentError(msg)

    def contains(self, lat: float, lng: float) -> bool:
        """Whether a point lies inside the rectangle (edges included)."""
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def area_km2(self) -> float:
        """Approximate area using an equirectangular projection at the mid latitude."""
        mid_lat = math.radians((self.south + self.north) / 2)
        height_km = (self.north - self.south) * _KM_PER_DEGREE
        width_km = (self.east - self.west) * _KM_PER_DEGREE * math.cos(mid_lat)
        return abs(height_km * width_km)

    def padded(self, km: float) -> "BoundingBox":
        """Grow the rectangle by ``km`` on every side, clipped to valid coordinates."""
        lat_pad = km / _KM_PER_DEGREE
        widest_lat = min(89.0, max(abs(self.south), abs(self.north)) + lat_pad)
        lng_pad = km / (_KM_PER_DEGREE * math.cos(math.radians(widest_lat)))
        return BoundingBox(
            west=max(-180.0, self.west - lng_pad),
            south=max(-90.0, self.south - lat_pad),
            east=min(180.0, self.east + lng_pad),
            north=min(90.0, self.north + lat_pad),
        )


def validate_resolution(resolution: int) -> int:
    """Check that a resolution is inside the H3 range.

    Raises:
        InvalidResolutionError: If the resolution is outside 0–15.
    """
    if isinstance(resolution, bool) or not isinstance(resolution, int):
        msg = f"Resolution must be an integer, got {resolution!r}"
        raise InvalidResolutionError(msg)
    if not MIN_RESOLUTION <= resolution <= MAX_RESOLUTION:
        msg = f"Resolution must be between {MIN_RESOLUTION} and {MAX_RESOLUTION}, got {resolution}"
        raise InvalidResolutionError(msg)
    return resolution


def validate_cell(cell_id: str, resolution: int | None = None) -> str:
    """Check that ``cell_id`` is a valid H3 cell, optionally at ``resolution``.

    Raises:
        InvalidArgumentError: If the id is not a valid cell.
        InvalidResolutionError: If the cell is at a different resolution.
    """
    if not isinstance(cell_id, str) or not h3.is_valid_cell(cell_id):
        msg = f"Invalid cell id: {cell_id!r}"
        raise InvalidArgumentError(msg)
    if resolution is not None and h3.get_resolution(cell_id) != resolution:
        msg = f"Cell {cell_id} is at resolution {h3.get_resolution(cell_id)}, not {resolution}"
        raise InvalidResolutionError(msg)
    return cell_id


def cell_resolution(cell_id: str) -> int:
    """Resolution encoded in a cell id."""
    return h3.get_resolution(validate_cell(cell_id))


def cell_at(lat: float, lng: float, resolution: int) -> str:
    """Map a coordinate to the cell containing it at ``resolution``.

    Raises:
        InvalidArgumentError: If the coordinate is not a finite WGS84 point.
        InvalidResolutionError: If the resolution is out of range.
    """
    validate_resolution(resolution)
    if not (math.isfinite(lat) and math.isfinite(lng)):
        msg = "Coordinates must be finite numbers"
        raise InvalidArgumentError(msg)
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        msg = f"Coordinates out of range: ({lat}, {lng})"
        raise InvalidArgumentError(msg)
    return h3.latlng_to_cell(lat, lng, resolution)


def ancestor_at(cell_id: str, resolution: int, target_resolution: int) -> str:
    """Return the unique ancestor of a cell at a coarser (or equal) resolution.

    Args:
        cell_id: The fine cell.
        resolution: The cell's own resolution.
        target_resolution: The resolution of the wanted ancestor.

    Raises:
        InvalidResolutionError: If ``target_resolution`` is finer than
            ``resolution`` or either value is out of range.
    """
    validate_resolution(resolution)
    validate_resolution(target_resolution)
    validate_cell(cell_id, resolution)
    if target_resolution > resolution:
        msg = f"Target resolution {target_resolution} is finer than the cell resolution {resolution}"
        raise InvalidResolutionError(msg)
    if target_resolution == resolution:
        return cell_id
    return h3.cell_to_parent(cell_id, target_resolution)


def estimate_cell_count(bbox: BoundingBox, resolution: int) -> int:
    """Expected number of cells covering ``bbox`` without enumerating them."""
    validate_resolution(resolution)
    average_area = h3.average_hexagon_area(resolution, unit="km^2")
    return max(1, math.ceil(bbox.area_km2() / average_area))


def _lnglat_ring(cell_id: str) -> list[tuple[float, float]]:
    return [(lng, lat) for lat, lng in h3.cell_to_boundary(cell_id)]


def covering_cells(bbox: BoundingBox, resolution: int) -> set[str]:
    """Return every cell whose footprint intersects ``bbox``.

    Cells are filled over a rectangle padded by the hexagon size so that
    cells whose centroid falls just outside the viewport but whose edge
    crosses into it are kept. The result is never truncated; guarding
    against oversized requests is the caller's job.
    """
    validate_resolution(resolution)
    pad_km = h3.average_hexagon_edge_length(resolution, unit="km") * _PAD_EDGE_FACTOR
    padded = bbox.padded(pad_km)
    candidates: set[str] = set()
    # H3 polygon fill misreads edges spanning 180 degrees or more of longitude
    slices = max(1, math.ceil((padded.east - padded.west) / _MAX_SLICE_DEGREES))
    step = (padded.east - padded.west) / slices
    for i in range(slices):
        west = padded.west + i * step
        east = padded.east if i == slices - 1 else west + step
        outer = [
            (padded.south, west),
            (padded.south, east),
            (padded.north, east),
            (padded.north, west),
        ]
        candidates.update(h3.polygon_to_cells(h3.LatLngPoly(outer), resolution))
    # Tiny viewports may not contain any centroid at all
    candidates.add(h3.latlng_to_cell((bbox.south + bbox.north) / 2, (bbox.west + bbox.east) / 2, resolution))

    rect = box(bbox.west, bbox.south, bbox.east, bbox.north)
    covering: set[str] = set()
    for cell in candidates:
        lat, lng = h3.cell_to_latlng(cell)
        if bbox.contains(lat, lng) or Polygon(_lnglat_ring(cell)).intersects(rect):
            covering.add(cell)
    return covering


def cell_boundary(cell_id: str) -> list[list[float]]:
    """Closed GeoJSON ring (``[lng, lat]`` pairs) outlining a cell."""
    ring = [[lng, lat] for lng, lat in _lnglat_ring(validate_cell(cell_id))]
    if ring and ring[0] != ring[-1]:
        ring.append(list(ring[0]))
    return ring
