"""Aggregate models: per-cell respondent totals and per-question counters."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from poll_geo_api.models.base import Base

# Exact sums: 22 integer digits, six decimal places
SUM_TYPE = Numeric(28, 6)


class AggregateCell(Base):
    """Respondent total for one (poll, resolution, cell).

    A missing row means zero respondents. The base resolution is kept live
    by incremental updates; every resolution is rebuilt by rollup.
    """

    __tablename__ = "aggregate_cells"

    poll_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    resolution: Mapped[int] = mapped_column(Integer, primary_key=True)
    cell_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    total_respondents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_aggregate_cells_poll_resolution", "poll_id", "resolution"),)


class AggregateCounter(Base):
    """Sign-bucketed counters for one question within one aggregate cell."""

    __tablename__ = "aggregate_counters"

    poll_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    resolution: Mapped[int] = mapped_column(Integer, primary_key=True)
    cell_id: Mapped[str] = mapped_column(String(16), primary_key=True)
    question_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    value_sum: Mapped[Decimal] = mapped_column(SUM_TYPE, nullable=False, default=0, server_default="0")
    pos_sum: Mapped[Decimal] = mapped_column(SUM_TYPE, nullable=False, default=0, server_default="0")
    neg_sum: Mapped[Decimal] = mapped_column(SUM_TYPE, nullable=False, default=0, server_default="0")
    pos_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    neg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    zero_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (Index("ix_aggregate_counters_question", "poll_id", "resolution", "question_id"),)
