"""PollResponse model: one respondent's answer to one poll question."""

from decimal import Decimal

from sqlalchemy import Boolean, Float, Index, Integer, Numeric, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from poll_geo_api.models.base import Base, TimestampMixin, UUIDMixin


class PollResponse(Base, UUIDMixin, TimestampMixin):
    """A single answer, with the respondent's location at submission time.

    All rows of one ``(poll_id, user_id)`` pair together form the
    respondent's snapshot. The stamped cell (``cell_id``/``resolution``) is
    preferred over raw coordinates when aggregating.
    """

    __tablename__ = "poll_responses"

    poll_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    question_id: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    cell_id: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolution: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", "question_id", name="uq_poll_response_question"),
        Index("ix_poll_responses_poll_user", "poll_id", "user_id"),
        Index("ix_poll_responses_poll_submitted", "poll_id", "submitted"),
    )
