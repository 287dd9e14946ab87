"""Stats routes - pipeline observability and derived price stats."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from price_intel.api.deps import get_db
from price_intel.schemas.api import (
    CountyStatsOut,
    RunOut,
    ScrapeHealthResponse,
    WeeklyPointOut,
    ZipStatsOut,
)
from price_intel.services.data_service import DataService
from price_intel.services.scrape_health import ScrapeHealthTracker

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/runs", response_model=list[RunOut])
def get_pipeline_runs(
    job_name: Optional[str] = Query(None, description="Filter by job (zip_stats, county_stats, reconcile, ...)"),
    status: Optional[str] = Query(None, description="Filter by status (running, success, partial, failure)"),
    limit: int = Query(10, ge=1, le=50, description="Number of runs to return"),
    db: Session = Depends(get_db),
):
    """
    Get recent pipeline runs.

    Shows updated/skipped/failed partition counts, status and error messages.
    """
    service = DataService(db)
    runs = service.get_pipeline_runs(job_name=job_name, status=status, limit=limit)

    return [
        RunOut(
            run_id=str(run.run_id),
            job_name=run.job_name,
            fuel_type=run.fuel_type,
            status=run.status,
            updated=run.updated,
            skipped=run.skipped,
            failed=run.failed,
            error_message=run.error_message,
            started_at=run.started_at,
            ended_at=run.ended_at,
        )
        for run in runs
    ]


@router.get("/zip/{zip_prefix}", response_model=ZipStatsOut)
def get_zip_stats(
    zip_prefix: str = Path(..., pattern=r"^\d{3}$", description="3-digit ZIP prefix"),
    fuel_type: str = Query("heating_oil"),
    db: Session = Depends(get_db),
):
    """Current price snapshot for a ZIP prefix, with recent weekly medians."""
    service = DataService(db)
    stats = service.get_zip_stats(zip_prefix, fuel_type)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No stats for ZIP prefix {zip_prefix}")

    out = ZipStatsOut.model_validate(stats)
    out.history = [WeeklyPointOut.model_validate(w) for w in service.get_zip_history(zip_prefix, fuel_type)]
    return out


@router.get("/county/{state_code}/{county_name}", response_model=CountyStatsOut)
def get_county_stats(
    state_code: str,
    county_name: str,
    fuel_type: str = Query("heating_oil"),
    db: Session = Depends(get_db),
):
    """Current price snapshot for a county."""
    stats = DataService(db).get_county_stats(state_code, county_name, fuel_type)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No stats for {county_name}, {state_code.upper()}")
    return CountyStatsOut.model_validate(stats)


@router.get("/scrape-health", response_model=ScrapeHealthResponse)
def get_scrape_health(db: Session = Depends(get_db)):
    """Supplier counts per scrape status (active, cooldown, disabled)."""
    stats = ScrapeHealthTracker(db).backoff_stats()
    return ScrapeHealthResponse(**stats)
