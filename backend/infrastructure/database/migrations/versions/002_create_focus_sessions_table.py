"""Create focus_sessions table

Revision ID: 002
Revises: 001
Create Date: 2026-09-21

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "focus_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("task_id", sa.String(length=255), nullable=False),
        sa.Column("task_title", sa.String(length=500), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_duration_seconds", sa.Integer(), nullable=False, server_default="5400"),
        sa.Column("focus_quality", sa.Integer(), nullable=True),
        sa.Column("distractions", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("reflection", sa.JSON(), nullable=True),
        sa.Column("ai_summary", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "focus_quality IS NULL OR (focus_quality BETWEEN 1 AND 10)",
            name="ck_focus_sessions_quality_range",
        ),
    )

    op.create_index("ix_focus_sessions_user_started", "focus_sessions", ["user_id", "started_at"])


def downgrade() -> None:
    op.drop_index("ix_focus_sessions_user_started", table_name="focus_sessions")
    op.drop_table("focus_sessions")
