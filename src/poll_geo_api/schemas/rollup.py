"""Rollup Pydantic v2 response schemas."""

from datetime import datetime

from pydantic import BaseModel


class RollupTriggerResponse(BaseModel):
    """Accepted on-demand rollup."""

    job_id: str
    poll_id: str
    status: str


class RollupJobResponse(BaseModel):
    """Status of a background rollup job."""

    job_id: str
    name: str
    status: str
    error: str | None = None


class RollupStateResponse(BaseModel):
    """Dirty flag and rollup timestamps of one poll."""

    poll_id: str
    dirty: bool
    last_submission_at: datetime | None = None
    last_rolled_at: datetime | None = None
    last_error: str | None = None

    model_config = {"from_attributes": True}
