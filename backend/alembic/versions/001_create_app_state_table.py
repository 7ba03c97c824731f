"""Create app_state table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `app_state` table holding one JSON snapshot per bucket.
How:   JSONB on PostgreSQL, plain JSON elsewhere; bucket name is the primary key
       so every flush is a single-row upsert.

Rollback: downgrade() drops the table; every durable bucket is lost and the
next start serves default state.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create app_state (see vitali/models/app_state.py)."""
    op.create_table(
        "app_state",

        sa.Column(
            "bucket",
            sa.String(128),
            nullable=False,
            comment="Bucket name, e.g. patient_profiles",
        ),

        sa.Column(
            "data",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
            comment="Entire JSON value of the bucket",
        ),

        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="When this snapshot was last written (UTC)",
        ),

        sa.PrimaryKeyConstraint("bucket"),
    )


def downgrade() -> None:
    op.drop_table("app_state")
