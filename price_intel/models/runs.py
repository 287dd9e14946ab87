"""Batch run ledger: one row per pipeline job, feeds /stats/runs and exit codes."""

import uuid
from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from price_intel.models.base import GUID, JSONType, Base, UTCDateTime


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    run_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )

    job_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    fuel_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # running | success | partial | failure
    )

    updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    # "metadata" attribute name is reserved by SQLAlchemy; use column name metadata with safe attribute.
    meta: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    ended_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
