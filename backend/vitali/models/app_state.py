"""
Vitali Backend — Bucket Snapshot Model
========================================

What:  ORM model for the `app_state` table: one row per state bucket.
How:   `bucket` is the primary key; `data` holds the bucket's entire JSON value;
       `updated_at` is rewritten by every upsert.
Who:   Written and read by SqlSnapshotBackend; read by Alembic for migrations.

Table Design:
    - bucket VARCHAR(128) PK: fixed catalog names, so the key doubles as the
      upsert conflict target
    - data JSON (JSONB on PostgreSQL): opaque blob, never queried into
    - updated_at TIMESTAMPTZ: last successful flush
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from vitali.database import Base


class AppStateSnapshot(Base):
    """Latest durable snapshot of one bucket."""

    __tablename__ = "app_state"

    bucket: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Bucket name, e.g. patient_profiles",
    )

    data: Mapped[Any] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        comment="Entire JSON value of the bucket",
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        comment="When this snapshot was last written (UTC)",
    )

    def __repr__(self) -> str:
        return f"<AppStateSnapshot(bucket='{self.bucket}', updated_at='{self.updated_at}')>"
