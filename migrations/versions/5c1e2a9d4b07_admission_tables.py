"""admission tables

Revision ID: 5c1e2a9d4b07
Revises:
Create Date: 2026-10-18 09:12:44.310552

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e2a9d4b07"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the settings and rate-limit tables."""
    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("setting_key", sa.String(length=100), nullable=False),
        sa.Column("setting_value", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("setting_key"),
    )
    op.create_table(
        "rate_limits",
        sa.Column("key_id", sa.String(length=255), nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False),
        sa.Column("reset_time", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("key_id"),
    )


def downgrade() -> None:
    """Drop the settings and rate-limit tables."""
    op.drop_table("rate_limits")
    op.drop_table("system_settings")
