"""Pipeline routes - trigger batch jobs on demand."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from price_intel.api.deps import get_clock, get_db
from price_intel.core.clock import Clock
from price_intel.core.logging import get_logger
from price_intel.schemas.api import PipelineTriggerResponse
from price_intel.services.pipeline_service import PipelineService

router = APIRouter(prefix="/pipeline", tags=["pipeline"])
log = get_logger("pipeline_routes")


@router.post("/run", response_model=PipelineTriggerResponse)
def trigger_pipeline(
    fuel_type: str = Query("heating_oil"),
    skip_reconcile: bool = Query(False),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """
    Run the nightly job now.

    1. Extend recently-scraped prices that expired during a missed run
    2. Recompute ZIP prefix stats
    3. Recompute county stats

    Check /stats/runs for per-job details.
    """
    log.info(f"Pipeline triggered via API | fuel={fuel_type}")

    try:
        result = PipelineService(db, clock).run_nightly(fuel_type=fuel_type, skip_reconcile=skip_reconcile)
    except Exception as exc:  # noqa: BLE001
        log.error(f"Pipeline failed: {exc}")
        return PipelineTriggerResponse(success=False, status="failure", error=str(exc))

    return PipelineTriggerResponse(
        success=not result.partial,
        status="partial" if result.partial else "success",
        result=result.to_dict(),
    )
