"""Data Service - read-only queries behind the operational routes."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from price_intel.core.logging import get_logger
from price_intel.models.runs import PipelineRun
from price_intel.models.stats import CountyCurrentStats, ZipCurrentStats, ZipWeeklyStats

log = get_logger("data_service")


class DataService:
    """Handles all stats query operations - reads from DB only, no writes."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Current snapshots
    # -------------------------------------------------------------------------
    def get_zip_stats(self, zip_prefix: str, fuel_type: str = "heating_oil") -> Optional[ZipCurrentStats]:
        return self.db.get(ZipCurrentStats, (zip_prefix, fuel_type))

    def get_zip_history(self, zip_prefix: str, fuel_type: str = "heating_oil", limit: int = 12) -> List[ZipWeeklyStats]:
        stmt = (
            select(ZipWeeklyStats)
            .where(ZipWeeklyStats.zip_prefix == zip_prefix)
            .where(ZipWeeklyStats.fuel_type == fuel_type)
            .order_by(ZipWeeklyStats.week_start.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_county_stats(
        self, state_code: str, county_name: str, fuel_type: str = "heating_oil"
    ) -> Optional[CountyCurrentStats]:
        return self.db.get(CountyCurrentStats, (county_name, state_code.upper(), fuel_type))

    # -------------------------------------------------------------------------
    # Pipeline runs
    # -------------------------------------------------------------------------
    def get_pipeline_runs(
        self,
        job_name: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[PipelineRun]:
        """Get recent pipeline runs with optional filtering."""
        stmt = select(PipelineRun)

        if job_name:
            stmt = stmt.where(PipelineRun.job_name == job_name)
        if status:
            stmt = stmt.where(PipelineRun.status == status)

        stmt = stmt.order_by(PipelineRun.started_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_latest_run(self) -> Optional[PipelineRun]:
        stmt = select(PipelineRun).order_by(PipelineRun.started_at.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()
