"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from poll_geo_api.models.aggregate_cell import AggregateCell, AggregateCounter
from poll_geo_api.models.base import Base
from poll_geo_api.models.poll_response import PollResponse
from poll_geo_api.models.poll_rollup_state import PollRollupState

__all__ = [
    "AggregateCell",
    "AggregateCounter",
    "Base",
    "PollResponse",
    "PollRollupState",
]
