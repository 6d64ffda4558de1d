"""Submission Pydantic v2 request/response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, Field, field_validator, model_validator

from poll_geo_api.lib.aggregation.counters import MAX_ABS_VALUE, VALUE_SCALE
from poll_geo_api.lib.errors import InvalidArgumentError
from poll_geo_api.lib.spatial import validate_cell

AnswerValue = Annotated[Decimal, Field(gt=-MAX_ABS_VALUE, lt=MAX_ABS_VALUE, decimal_places=VALUE_SCALE)]


class SubmissionRequest(BaseModel):
    """A respondent's full answer set for one poll.

    The request replaces any previously stored answers. Questions left out
    are treated as unanswered.
    """

    model_config = {"allow_inf_nan": False}

    submitted: bool = True
    answers: dict[str, AnswerValue] = Field(default_factory=dict, description="question_id -> numeric answer")
    cell_id: str | None = Field(default=None, description="H3 cell stamped by the location service")
    resolution: int | None = Field(default=None, ge=0, le=15, description="Resolution of cell_id")
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @field_validator("answers")
    @classmethod
    def validate_question_ids(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        """Reject blank question ids."""
        for question_id in v:
            if not question_id.strip():
                msg = "question ids must be non-empty"
                raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_location(self) -> "SubmissionRequest":
        """Require cell/resolution and latitude/longitude as consistent pairs."""
        if (self.cell_id is None) != (self.resolution is None):
            msg = "cell_id and resolution must be given together"
            raise ValueError(msg)
        if self.cell_id is not None:
            try:
                validate_cell(self.cell_id, self.resolution)
            except InvalidArgumentError as e:
                raise ValueError(str(e)) from e
        if (self.latitude is None) != (self.longitude is None):
            msg = "latitude and longitude must be given together"
            raise ValueError(msg)
        return self


class SubmissionResponse(BaseModel):
    """Stored state of a respondent after a write."""

    poll_id: str
    user_id: str
    submitted: bool
    answers: dict[str, float]
    cell_id: str | None = None
    resolution: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    updated_at: datetime | None = None
    transition: str = Field(description="How the respondent's counted state changed")
    aggregated: bool = Field(description="Whether the base layer was updated for this write")
