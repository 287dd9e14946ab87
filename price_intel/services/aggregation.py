"""Shared batch loop for the ZIP and county aggregators.

Inputs are read once per batch; each partition is then written in its own
transaction in sorted key order, so a failed partition rolls back alone and
already-committed partitions survive a later fatal error.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock, ensure_utc
from price_intel.core.config import settings
from price_intel.core.db import infrastructure_guard, insert_once, upsert
from price_intel.core.errors import (
    FatalInfrastructureError,
    ImmutableHistoryError,
    NoValidObservations,
    PartitionComputeError,
)
from price_intel.core.logging import get_logger, partition_context
from price_intel.models.supplier import Supplier
from price_intel.schemas.summary import BatchSummary
from price_intel.services.geo_reference import ZipCountyMap
from price_intel.services.observation_service import ObservationService
from price_intel.services.price_stats import (
    ObservationPoint,
    PartitionStats,
    TrendSnapshot,
    summarize,
    trend_from_history,
    week_as_of,
    week_start,
)
from price_intel.services.scoring import QualityWeights, quality_score

log = get_logger("aggregation")


@dataclass
class AggregationInputs:
    """One consistent read of everything a batch needs."""

    fuel_type: str
    as_of: datetime
    # Active supplier -> served 5-digit ZIPs
    served: Dict[uuid.UUID, List[str]]
    # Supplier -> observations valid at ``as_of``
    observations: Dict[uuid.UUID, List[ObservationPoint]]

    def points_for(self, supplier_ids: Set[uuid.UUID]) -> List[ObservationPoint]:
        points: List[ObservationPoint] = []
        for supplier_id in sorted(supplier_ids, key=str):
            points.extend(self.observations.get(supplier_id, []))
        return points

    def suppliers_with_data(self, supplier_ids: Set[uuid.UUID]) -> Set[uuid.UUID]:
        return {sid for sid in supplier_ids if self.observations.get(sid)}


def load_inputs(
    db: Session,
    fuel_type: str,
    as_of: datetime,
    historical: bool = False,
) -> AggregationInputs:
    suppliers = db.execute(select(Supplier).where(Supplier.active.is_(True))).scalars().all()
    served = {
        s.id: sorted({str(z).strip() for z in (s.postal_codes_served or []) if str(z).strip()})
        for s in suppliers
    }

    observations: Dict[uuid.UUID, List[ObservationPoint]] = defaultdict(list)
    rows = ObservationService(db).valid_observations(fuel_type=fuel_type, as_of=as_of, historical=historical)
    for row in rows:
        if row.supplier_id not in served:
            continue
        observations[row.supplier_id].append(
            ObservationPoint(row.supplier_id, row.price_per_unit, row.observed_at)
        )

    return AggregationInputs(fuel_type, as_of, served, dict(observations))


@dataclass
class Partition:
    key: Tuple[str, ...]
    label: str
    fuel_type: str
    supplier_ids: Set[uuid.UUID] = field(default_factory=set)
    zip_codes: Set[str] = field(default_factory=set)


def zip_prefix(zip_code: str) -> Optional[str]:
    zip_code = str(zip_code).strip()
    if len(zip_code) < 3 or not zip_code[:3].isdigit():
        return None
    return zip_code[:3]


class PartitionedAggregator:
    """Template for a per-partition aggregation pass.

    Subclasses define how suppliers are grouped (``build_partitions``) and
    how rows are shaped for their weekly and current tables.
    """

    job_name = "aggregate"
    weights: QualityWeights
    weekly_model: Any
    current_model: Any
    key_columns: Tuple[str, ...] = ()
    weekly_update_columns: Tuple[str, ...] = ()
    current_update_columns: Tuple[str, ...] = ()

    def __init__(self, db: Session, clock: Optional[Clock] = None, geo: Optional[ZipCountyMap] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.geo = geo

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------
    def build_partitions(
        self, inputs: AggregationInputs, geo: ZipCountyMap, summary: BatchSummary
    ) -> Dict[Tuple[str, ...], Partition]:
        raise NotImplementedError

    def check_partition(self, partition: Partition, stats: PartitionStats, inputs: AggregationInputs) -> None:
        """Extra invariants; raise ``PartitionComputeError`` to fail the partition."""

    def weekly_row(self, partition: Partition, stats: PartitionStats, week: date, now: datetime) -> Dict[str, Any]:
        raise NotImplementedError

    def current_row(
        self,
        partition: Partition,
        stats: PartitionStats,
        trend: TrendSnapshot,
        score,
        geo: ZipCountyMap,
        now: datetime,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def _key_values(self, partition: Partition) -> Dict[str, str]:
        values = dict(zip(self.key_columns, partition.key))
        values["fuel_type"] = partition.fuel_type
        return values

    # -------------------------------------------------------------------------
    # Batch loop
    # -------------------------------------------------------------------------
    def compute(
        self,
        fuel_type: str = "heating_oil",
        as_of: Optional[datetime] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> BatchSummary:
        """Recompute current snapshots and the current week's rows for every partition."""
        now = ensure_utc(as_of) if as_of else self.clock.now()
        current_week = week_start(now)
        summary = BatchSummary(job=self.job_name, fuel_type=fuel_type, week_start=current_week)
        started = time.perf_counter()

        with infrastructure_guard(f"{self.job_name}: loading inputs"):
            inputs = load_inputs(self.db, fuel_type, now)
            geo = self.geo or ZipCountyMap.from_db(self.db)
            partitions = self.build_partitions(inputs, geo, summary)
            # Release the read transaction before partition writes begin
            self.db.rollback()

        summary.total = len(partitions)
        log.info(f"Starting {self.job_name} | fuel={fuel_type} week={current_week} partitions={summary.total}")

        for key in sorted(partitions):
            if stop_event is not None and stop_event.is_set():
                summary.cancelled = True
                log.warning(f"{self.job_name} cancelled before {partitions[key].label}")
                break

            partition = partitions[key]
            with partition_context(partition.label):
                try:
                    with infrastructure_guard(f"{self.job_name}: {partition.label}"):
                        self._write_current(partition, inputs, geo, current_week, now)
                        self.db.commit()
                    summary.updated += 1
                except NoValidObservations as exc:
                    self.db.rollback()
                    summary.record_skip(partition.label, exc.reason)
                except (ImmutableHistoryError, FatalInfrastructureError):
                    self.db.rollback()
                    raise
                except PartitionComputeError as exc:
                    self.db.rollback()
                    summary.record_failure(partition.label, exc.reason)
                    log.error(f"{self.job_name} failed for {partition.label}: {exc.reason}")
                except Exception as exc:  # noqa: BLE001
                    self.db.rollback()
                    summary.record_failure(partition.label, str(exc))
                    log.error(f"{self.job_name} failed for {partition.label}: {exc}")

        summary.duration_ms = int((time.perf_counter() - started) * 1000)
        self._log_summary(summary)
        return summary

    def backfill_week(
        self,
        week: date,
        fuel_type: str = "heating_oil",
        stop_event: Optional[threading.Event] = None,
    ) -> BatchSummary:
        """Write-once reconstruction of a completed week's rows.

        Uses observations as they were valid at the end of that week. Weeks
        that already have a row are left as they are.
        """
        now = self.clock.now()
        current_week = week_start(now)
        if week >= current_week:
            raise ValueError(f"Backfill only covers completed weeks (got {week}, current {current_week})")

        summary = BatchSummary(job=f"{self.job_name}_backfill", fuel_type=fuel_type, week_start=week)
        started = time.perf_counter()

        with infrastructure_guard(f"{self.job_name}: loading inputs for {week}"):
            inputs = load_inputs(self.db, fuel_type, week_as_of(week), historical=True)
            geo = self.geo or ZipCountyMap.from_db(self.db)
            partitions = self.build_partitions(inputs, geo, summary)
            self.db.rollback()

        summary.total = len(partitions)
        log.info(f"Starting {summary.job} | fuel={fuel_type} week={week} partitions={summary.total}")

        for key in sorted(partitions):
            if stop_event is not None and stop_event.is_set():
                summary.cancelled = True
                log.warning(f"{summary.job} cancelled before {partitions[key].label}")
                break

            partition = partitions[key]
            with partition_context(partition.label):
                try:
                    with infrastructure_guard(f"{summary.job}: {partition.label}"):
                        stats = summarize(inputs.points_for(partition.supplier_ids))
                        if stats is None:
                            raise NoValidObservations(partition.label)
                        self.check_partition(partition, stats, inputs)
                        written = insert_once(
                            self.db,
                            self.weekly_model,
                            [self.weekly_row(partition, stats, week, now)],
                            conflict_columns=[*self.key_columns, "fuel_type", "week_start"],
                        )
                        self.db.commit()
                    if written:
                        summary.updated += 1
                    else:
                        summary.record_skip(partition.label, "immutable_history")
                except NoValidObservations as exc:
                    self.db.rollback()
                    summary.record_skip(partition.label, exc.reason)
                except FatalInfrastructureError:
                    self.db.rollback()
                    raise
                except PartitionComputeError as exc:
                    self.db.rollback()
                    summary.record_failure(partition.label, exc.reason)
                    log.error(f"{summary.job} failed for {partition.label}: {exc.reason}")
                except Exception as exc:  # noqa: BLE001
                    self.db.rollback()
                    summary.record_failure(partition.label, str(exc))
                    log.error(f"{summary.job} failed for {partition.label}: {exc}")

        summary.duration_ms = int((time.perf_counter() - started) * 1000)
        self._log_summary(summary)
        return summary

    # -------------------------------------------------------------------------
    # Partition write
    # -------------------------------------------------------------------------
    def _write_current(
        self,
        partition: Partition,
        inputs: AggregationInputs,
        geo: ZipCountyMap,
        current_week: date,
        now: datetime,
    ) -> None:
        stats = summarize(inputs.points_for(partition.supplier_ids))
        if stats is None:
            raise NoValidObservations(partition.label)
        self.check_partition(partition, stats, inputs)

        self.write_weekly(partition, stats, current_week, current_week, now)

        history = self._weekly_history(partition, current_week)
        trend = trend_from_history(history, current_week, settings.HISTORY_WEEKS, settings.TREND_WEEKS)
        hours_since = (now - stats.last_observed_at).total_seconds() / 3600
        score = quality_score(
            supplier_count=stats.supplier_count,
            weeks_available=trend.weeks_available,
            data_points=stats.data_points,
            price_dispersion=stats.dispersion,
            hours_since_update=max(0.0, hours_since),
            weights=self.weights,
        )

        upsert(
            self.db,
            self.current_model,
            [self.current_row(partition, stats, trend, score, geo, now)],
            conflict_columns=[*self.key_columns, "fuel_type"],
            update_columns=self.current_update_columns,
        )

    def write_weekly(
        self,
        partition: Partition,
        stats: PartitionStats,
        week: date,
        current_week: date,
        now: datetime,
    ) -> None:
        """Upsert a weekly row; only the current week may be rewritten."""
        if week < current_week:
            raise ImmutableHistoryError(week, current_week)
        upsert(
            self.db,
            self.weekly_model,
            [self.weekly_row(partition, stats, week, now)],
            conflict_columns=[*self.key_columns, "fuel_type", "week_start"],
            update_columns=self.weekly_update_columns,
        )

    def _weekly_history(self, partition: Partition, current_week: date) -> Dict[date, Any]:
        model = self.weekly_model
        since = current_week - timedelta(weeks=settings.HISTORY_WEEKS - 1)
        stmt = select(model.week_start, model.median_price).where(
            model.week_start >= since,
            model.week_start <= current_week,
        )
        for column, value in self._key_values(partition).items():
            stmt = stmt.where(getattr(model, column) == value)
        return {week: price for week, price in self.db.execute(stmt).all()}

    def _log_summary(self, summary: BatchSummary) -> None:
        log.info(
            f"{summary.job} finished | status={summary.status} updated={summary.updated} "
            f"skipped={summary.skipped} failed={summary.failed} total={summary.total} "
            f"duration_ms={summary.duration_ms}"
        )
        if summary.skipped:
            log.info(f"{summary.job} skip reasons: {summary.skip_reason_counts()}")
