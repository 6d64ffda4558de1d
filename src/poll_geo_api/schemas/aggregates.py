"""Aggregate query Pydantic v2 response schemas."""

from typing import Any

from pydantic import BaseModel, Field


class AggregateValueResponse(BaseModel):
    """One populated cell and its summed value."""

    cell_id: str
    sum: float

    model_config = {"from_attributes": True}


class AggregateQueryResponse(BaseModel):
    """Flat list of aggregates for one poll question at one resolution."""

    aggs: list[AggregateValueResponse]


class AggregateFeatureCollection(BaseModel):
    """GeoJSON FeatureCollection of hexagon cells for map rendering."""

    type: str = "FeatureCollection"
    features: list[dict[str, Any]]
    bbox: list[float] | None = Field(default=None, description="[min_lng, min_lat, max_lng, max_lat] of all cells")
    domain: tuple[float, float] = Field(description="Legend domain (min, max) of the cell sums")
