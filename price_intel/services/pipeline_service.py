"""Batch orchestration for the price intelligence pipeline.

Every job is recorded in ``pipeline_runs``: the row is committed as
``running`` before work starts and closed as success, partial or failure.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock
from price_intel.core.db import infrastructure_guard
from price_intel.core.logging import get_logger, run_context
from price_intel.models.runs import PipelineRun
from price_intel.schemas.summary import BatchSummary
from price_intel.services.county_aggregator import CountyAggregator
from price_intel.services.geo_reference import ZipCountyMap
from price_intel.services.observation_service import ObservationService
from price_intel.services.price_stats import week_start
from price_intel.services.scrape_health import ScrapeHealthTracker
from price_intel.services.validation_service import ValidationReport, ValidationService
from price_intel.services.zip_aggregator import ZipAggregator

log = get_logger("pipeline_service")


@dataclass
class PipelineResult:
    summaries: List[BatchSummary] = field(default_factory=list)
    reconciled: Optional[int] = None
    validation: Optional[ValidationReport] = None

    @property
    def partial(self) -> bool:
        if any(s.status != "success" for s in self.summaries):
            return True
        return self.validation is not None and not self.validation.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "partial" if self.partial else "success",
            "reconciled": self.reconciled,
            "summaries": [s.to_dict() for s in self.summaries],
            "validation": self.validation.to_dict() if self.validation else None,
        }


class PipelineService:
    """Runs pipeline jobs and keeps the run ledger.

    Responsibilities:
    - Recover expired prices before aggregation
    - Run the ZIP pass, then the county pass, for the current week
    - Backfill completed weeks oldest first
    - Validate county stats after a run
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None, geo: Optional[ZipCountyMap] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.geo = geo

    # -------------------------------------------------------------------------
    # Run ledger
    # -------------------------------------------------------------------------
    def _run_job(self, job_name: str, fuel_type: Optional[str], work: Callable[[], Any]) -> Any:
        with infrastructure_guard(f"{job_name}: opening run"):
            run = PipelineRun(
                job_name=job_name,
                fuel_type=fuel_type,
                status="running",
                started_at=datetime.now(timezone.utc),
            )
            self.db.add(run)
            self.db.commit()
            self.db.refresh(run)

        with run_context(job_name, run.run_id):
            try:
                result = work()
            except Exception as exc:  # noqa: BLE001
                self.db.rollback()
                run.status = "failure"
                run.error_message = str(exc)
                run.ended_at = datetime.now(timezone.utc)
                try:
                    self.db.add(run)
                    self.db.commit()
                except SQLAlchemyError as record_exc:
                    self.db.rollback()
                    log.error(f"Could not record failure of {job_name}: {record_exc}")
                log.error(f"{job_name} failed: {exc}")
                raise

            self._close_run(run, result)
        return result

    def _close_run(self, run: PipelineRun, result: Any) -> None:
        if isinstance(result, BatchSummary):
            run.status = result.status
            run.updated = result.updated
            run.skipped = result.skipped
            run.failed = result.failed
            run.meta = result.to_dict()
        elif isinstance(result, ValidationReport):
            run.status = "success" if result.ok else "partial"
            run.updated = result.checked
            run.failed = len(result.mismatches)
            run.meta = result.to_dict()
        else:
            run.status = "success"
            run.updated = int(result or 0)
        run.ended_at = datetime.now(timezone.utc)
        with infrastructure_guard(f"{run.job_name}: closing run"):
            self.db.add(run)
            self.db.commit()

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------
    def reconcile(self, gap_only: bool = False) -> int:
        """Extend expired prices; with ``gap_only`` only after a detected scheduling gap."""
        service = ObservationService(self.db, self.clock)

        def work() -> int:
            if not gap_only:
                return service.reconcile_expired()
            gap_start = service.scrape_gap_start()
            if gap_start is None:
                log.info("No scheduling gap detected; expired prices left to expire")
                return 0
            log.warning(f"Scheduling gap since {gap_start.isoformat()}; extending prices that expired during it")
            return service.reconcile_expired(expired_after=gap_start)

        return self._run_job("reconcile", None, work)

    def zip_pass(
        self, fuel_type: str = "heating_oil", stop_event: Optional[threading.Event] = None
    ) -> BatchSummary:
        aggregator = ZipAggregator(self.db, self.clock, self.geo)
        return self._run_job(
            "zip_stats", fuel_type, lambda: aggregator.compute(fuel_type=fuel_type, stop_event=stop_event)
        )

    def county_pass(
        self, fuel_type: str = "heating_oil", stop_event: Optional[threading.Event] = None
    ) -> BatchSummary:
        aggregator = CountyAggregator(self.db, self.clock, self.geo)
        return self._run_job(
            "county_stats", fuel_type, lambda: aggregator.compute(fuel_type=fuel_type, stop_event=stop_event)
        )

    def validate(self, fuel_type: str = "heating_oil") -> ValidationReport:
        service = ValidationService(self.db, self.clock)
        return self._run_job("validate", fuel_type, lambda: service.validate_counties(fuel_type))

    def reenable_disabled(self) -> int:
        tracker = ScrapeHealthTracker(self.db, self.clock)
        return self._run_job("reenable_disabled", None, tracker.reenable_disabled)

    def run_nightly(
        self,
        fuel_type: str = "heating_oil",
        skip_reconcile: bool = False,
        stop_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        """Recover prices that expired during a scheduling gap, then the ZIP and county passes."""
        result = PipelineResult()
        if not skip_reconcile:
            result.reconciled = self.reconcile(gap_only=True)

        zip_summary = self.zip_pass(fuel_type, stop_event)
        result.summaries.append(zip_summary)
        if zip_summary.cancelled:
            return result

        result.summaries.append(self.county_pass(fuel_type, stop_event))
        log.info(f"Nightly pipeline finished | {'partial' if result.partial else 'success'}")
        return result

    def backfill(
        self,
        weeks: int,
        fuel_type: str = "heating_oil",
        stop_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        """Reconstruct the ``weeks`` completed weeks before the current one, oldest first."""
        result = PipelineResult()
        current_week = week_start(self.clock.now())
        zip_aggregator = ZipAggregator(self.db, self.clock, self.geo)
        county_aggregator = CountyAggregator(self.db, self.clock, self.geo)

        for offset in range(weeks, 0, -1):
            if stop_event is not None and stop_event.is_set():
                log.warning("Backfill cancelled")
                break
            week = current_week - timedelta(weeks=offset)
            for job_name, aggregator in (
                ("zip_backfill", zip_aggregator),
                ("county_backfill", county_aggregator),
            ):
                summary = self._run_job(
                    job_name,
                    fuel_type,
                    lambda agg=aggregator, wk=week: agg.backfill_week(wk, fuel_type, stop_event),
                )
                result.summaries.append(summary)
        return result
