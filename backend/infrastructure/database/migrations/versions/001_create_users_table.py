"""Create users table

Revision ID: 001
Revises:
Create Date: 2026-09-14

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("subscription_tier", sa.String(length=50), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(length=50), nullable=True),
        sa.Column("ai_requests_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "ai_requests_reset_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
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
        sa.UniqueConstraint("stripe_customer_id"),
        sa.CheckConstraint("ai_requests_count >= 0", name="ck_users_ai_requests_count_non_negative"),
    )

    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_stripe_customer", "users", ["stripe_customer_id"])
    op.create_index("ix_users_subscription", "users", ["subscription_tier", "subscription_status"])


def downgrade() -> None:
    op.drop_index("ix_users_subscription", table_name="users")
    op.drop_index("ix_users_stripe_customer", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
