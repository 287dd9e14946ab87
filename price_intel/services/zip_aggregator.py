"""ZIP-prefix price stats (3-digit prefix, e.g. "105" for 10501-10599)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, Tuple

from price_intel.core.logging import get_logger
from price_intel.models.stats import ZipCurrentStats, ZipWeeklyStats
from price_intel.schemas.summary import BatchSummary
from price_intel.services.aggregation import (
    AggregationInputs,
    Partition,
    PartitionedAggregator,
    zip_prefix,
)
from price_intel.services.geo_reference import ZipCountyMap
from price_intel.services.price_stats import PartitionStats, TrendSnapshot
from price_intel.services.scoring import ZIP_WEIGHTS

log = get_logger("zip_aggregator")


class ZipAggregator(PartitionedAggregator):
    job_name = "zip_stats"
    weights = ZIP_WEIGHTS
    weekly_model = ZipWeeklyStats
    current_model = ZipCurrentStats
    key_columns = ("zip_prefix",)
    weekly_update_columns = (
        "median_price",
        "min_price",
        "max_price",
        "supplier_count",
        "data_points",
        "computed_at",
    )
    current_update_columns = (
        "region_name",
        "cities",
        "median_price",
        "min_price",
        "max_price",
        "supplier_count",
        "data_points",
        "weeks_available",
        "percent_change_6w",
        "first_week_price",
        "latest_week_price",
        "data_quality_score",
        "last_scrape_at",
        "computed_at",
    )

    def build_partitions(
        self, inputs: AggregationInputs, geo: ZipCountyMap, summary: BatchSummary
    ) -> Dict[Tuple[str, ...], Partition]:
        partitions: Dict[Tuple[str, ...], Partition] = {}
        for supplier_id, zip_codes in inputs.served.items():
            for zip_code in zip_codes:
                prefix = zip_prefix(zip_code)
                if prefix is None:
                    log.warning(f"Ignoring malformed served ZIP {zip_code!r} for supplier {supplier_id}")
                    continue
                partition = partitions.setdefault(
                    (prefix,), Partition(key=(prefix,), label=prefix, fuel_type=inputs.fuel_type)
                )
                partition.supplier_ids.add(supplier_id)
                partition.zip_codes.add(zip_code)
        return partitions

    def weekly_row(self, partition: Partition, stats: PartitionStats, week: date, now: datetime) -> Dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "zip_prefix": partition.key[0],
            "fuel_type": partition.fuel_type,
            "week_start": week,
            "median_price": stats.median_price,
            "min_price": stats.min_price,
            "max_price": stats.max_price,
            "supplier_count": stats.supplier_count,
            "data_points": stats.data_points,
            "computed_at": now,
        }

    def current_row(
        self,
        partition: Partition,
        stats: PartitionStats,
        trend: TrendSnapshot,
        score,
        geo: ZipCountyMap,
        now: datetime,
    ) -> Dict[str, Any]:
        region_name, cities = geo.region_for(partition.zip_codes)
        return {
            "zip_prefix": partition.key[0],
            "fuel_type": partition.fuel_type,
            "region_name": region_name,
            "cities": cities,
            "median_price": stats.median_price,
            "min_price": stats.min_price,
            "max_price": stats.max_price,
            "supplier_count": stats.supplier_count,
            "data_points": stats.data_points,
            "weeks_available": trend.weeks_available,
            "percent_change_6w": trend.percent_change_6w,
            "first_week_price": trend.first_week_price,
            "latest_week_price": trend.latest_week_price,
            "data_quality_score": score,
            "last_scrape_at": stats.last_observed_at,
            "computed_at": now,
        }
