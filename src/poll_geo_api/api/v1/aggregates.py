"""Aggregate query endpoints used by map clients."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from poll_geo_api.core.config import Settings, get_settings
from poll_geo_api.core.dependencies import get_async_session
from poll_geo_api.lib.aggregation import aggregate_bbox, build_feature_collection, value_domain
from poll_geo_api.schemas.aggregates import (
    AggregateFeatureCollection,
    AggregateQueryResponse,
    AggregateValueResponse,
)
from poll_geo_api.schemas.common import ErrorResponse
from poll_geo_api.services.query_service import AggregateValue, parse_bounds, query_aggregates

aggregates_router = APIRouter(prefix="/polls", tags=["aggregates"])


async def _run_query(
    session: AsyncSession,
    settings: Settings,
    poll_id: str,
    question_id: str | None,
    resolution: int,
    west: float | None,
    south: float | None,
    east: float | None,
    north: float | None,
) -> list[AggregateValue]:
    bbox = parse_bounds(west, south, east, north)
    return await query_aggregates(session, poll_id, question_id or "", resolution, bbox, settings)


@aggregates_router.get(
    "/{poll_id}/aggregates",
    response_model=AggregateQueryResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_aggregates(
    poll_id: str,
    question_id: str | None = Query(None),
    resolution: int = Query(...),
    west: float | None = Query(None),
    south: float | None = Query(None),
    east: float | None = Query(None),
    north: float | None = Query(None),
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AggregateQueryResponse:
    """Summed answers per populated cell, optionally limited to a viewport."""
    values = await _run_query(session, settings, poll_id, question_id, resolution, west, south, east, north)
    return AggregateQueryResponse(aggs=[AggregateValueResponse.model_validate(v) for v in values])


@aggregates_router.get(
    "/{poll_id}/aggregates/geojson",
    response_model=AggregateFeatureCollection,
    responses={400: {"model": ErrorResponse}},
)
async def get_aggregates_geojson(
    poll_id: str,
    question_id: str | None = Query(None),
    resolution: int = Query(...),
    west: float | None = Query(None),
    south: float | None = Query(None),
    east: float | None = Query(None),
    north: float | None = Query(None),
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AggregateFeatureCollection:
    """Same aggregates rendered as hexagon features with a bbox and legend domain."""
    values = await _run_query(session, settings, poll_id, question_id, resolution, west, south, east, north)
    collection = build_feature_collection((v.cell_id, v.sum) for v in values)
    return AggregateFeatureCollection(
        features=collection["features"],
        bbox=aggregate_bbox(collection),
        domain=value_domain(v.sum for v in values),
    )
