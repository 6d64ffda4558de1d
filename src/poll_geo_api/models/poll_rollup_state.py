"""PollRollupState model: dirty flag and rollup bookkeeping per poll."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text, true
from sqlalchemy.orm import Mapped, mapped_column

from poll_geo_api.models.base import Base


class PollRollupState(Base):
    """Whether a poll has writes not yet reflected in a full rollup."""

    __tablename__ = "poll_rollup_state"

    poll_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    dirty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    last_submission_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_rolled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_poll_rollup_state_dirty", "dirty"),)
