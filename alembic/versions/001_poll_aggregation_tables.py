"""Poll responses, aggregate cells and counters, and rollup state.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "poll_responses",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("poll_id", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("question_id", sa.String(128), nullable=False),
        sa.Column("value", sa.Numeric(18, 6), nullable=False),
        sa.Column("submitted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("cell_id", sa.String(16), nullable=True),
        sa.Column("resolution", sa.Integer, nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("poll_id", "user_id", "question_id", name="uq_poll_response_question"),
    )
    op.create_index("ix_poll_responses_poll_user", "poll_responses", ["poll_id", "user_id"])
    op.create_index("ix_poll_responses_poll_submitted", "poll_responses", ["poll_id", "submitted"])

    op.create_table(
        "aggregate_cells",
        sa.Column("poll_id", sa.String(128), primary_key=True),
        sa.Column("resolution", sa.Integer, primary_key=True),
        sa.Column("cell_id", sa.String(16), primary_key=True),
        sa.Column("total_respondents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_aggregate_cells_poll_resolution", "aggregate_cells", ["poll_id", "resolution"])

    op.create_table(
        "aggregate_counters",
        sa.Column("poll_id", sa.String(128), primary_key=True),
        sa.Column("resolution", sa.Integer, primary_key=True),
        sa.Column("cell_id", sa.String(16), primary_key=True),
        sa.Column("question_id", sa.String(128), primary_key=True),
        sa.Column("value_sum", sa.Numeric(28, 6), nullable=False, server_default="0"),
        sa.Column("pos_sum", sa.Numeric(28, 6), nullable=False, server_default="0"),
        sa.Column("neg_sum", sa.Numeric(28, 6), nullable=False, server_default="0"),
        sa.Column("pos_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("neg_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("zero_count", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index(
        "ix_aggregate_counters_question",
        "aggregate_counters",
        ["poll_id", "resolution", "question_id"],
    )

    op.create_table(
        "poll_rollup_state",
        sa.Column("poll_id", sa.String(128), primary_key=True),
        sa.Column("dirty", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_submission_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_rolled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
    )
    op.create_index("ix_poll_rollup_state_dirty", "poll_rollup_state", ["dirty"])


def downgrade() -> None:
    op.drop_table("poll_rollup_state")
    op.drop_table("aggregate_counters")
    op.drop_table("aggregate_cells")
    op.drop_table("poll_responses")
