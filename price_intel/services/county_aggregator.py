"""County-level price stats.

Suppliers are mapped to counties through the ZIPs they serve. Stats are
taken over the union of the county's suppliers' observations, each supplier
counted once no matter how many of its ZIPs fall in the county.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Set, Tuple

from price_intel.core.errors import PartitionComputeError, ReferenceDataMissing
from price_intel.core.logging import get_logger
from price_intel.models.stats import CountyCurrentStats, CountyWeeklyStats
from price_intel.schemas.summary import BatchSummary
from price_intel.services.aggregation import (
    AggregationInputs,
    Partition,
    PartitionedAggregator,
    zip_prefix,
)
from price_intel.services.geo_reference import ZipCountyMap
from price_intel.services.price_stats import PartitionStats, TrendSnapshot
from price_intel.services.scoring import COUNTY_WEIGHTS

log = get_logger("county_aggregator")


def prefix_supplier_counts(inputs: AggregationInputs) -> Dict[str, int]:
    """Distinct suppliers with valid data per 3-digit prefix, from the same inputs."""
    by_prefix: Dict[str, Set[uuid.UUID]] = defaultdict(set)
    for supplier_id, zip_codes in inputs.served.items():
        if not inputs.observations.get(supplier_id):
            continue
        for zip_code in zip_codes:
            prefix = zip_prefix(zip_code)
            if prefix is not None:
                by_prefix[prefix].add(supplier_id)
    return {prefix: len(ids) for prefix, ids in by_prefix.items()}


class CountyAggregator(PartitionedAggregator):
    job_name = "county_stats"
    weights = COUNTY_WEIGHTS
    weekly_model = CountyWeeklyStats
    current_model = CountyCurrentStats
    key_columns = ("county_name", "state_code")
    weekly_update_columns = (
        "median_price",
        "min_price",
        "max_price",
        "avg_price",
        "supplier_count",
        "data_points",
        "zip_count",
        "computed_at",
    )
    current_update_columns = (
        "median_price",
        "min_price",
        "max_price",
        "avg_price",
        "supplier_count",
        "data_points",
        "zip_prefixes",
        "zip_count",
        "weeks_available",
        "percent_change_6w",
        "first_week_price",
        "latest_week_price",
        "data_quality_score",
        "last_scrape_at",
        "computed_at",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._prefix_counts: Dict[str, int] = {}

    def build_partitions(
        self, inputs: AggregationInputs, geo: ZipCountyMap, summary: BatchSummary
    ) -> Dict[Tuple[str, ...], Partition]:
        partitions: Dict[Tuple[str, ...], Partition] = {}
        gaps: Set[str] = set()
        self._prefix_counts = prefix_supplier_counts(inputs)

        for supplier_id, zip_codes in inputs.served.items():
            for zip_code in zip_codes:
                ref = geo.lookup(zip_code)
                if ref is None:
                    if zip_code not in gaps:
                        gaps.add(zip_code)
                        log.warning(str(ReferenceDataMissing(zip_code)))
                    continue
                partition = partitions.setdefault(
                    ref.key, Partition(key=ref.key, label=ref.label, fuel_type=inputs.fuel_type)
                )
                partition.supplier_ids.add(supplier_id)
                partition.zip_codes.add(zip_code)

        summary.reference_gaps = sorted(gaps)
        return partitions

    def check_partition(self, partition: Partition, stats: PartitionStats, inputs: AggregationInputs) -> None:
        """A county cannot have more suppliers than its ZIP prefixes combined."""
        prefixes = {zip_prefix(z) for z in partition.zip_codes} - {None}
        ceiling = sum(self._prefix_counts.get(prefix, 0) for prefix in prefixes)
        if stats.supplier_count > ceiling:
            raise PartitionComputeError(
                partition.label,
                f"supplier_count {stats.supplier_count} exceeds ZIP prefix total {ceiling}",
            )

    @staticmethod
    def _prefixes(partition: Partition):
        return sorted({zip_prefix(z) for z in partition.zip_codes} - {None})

    def weekly_row(self, partition: Partition, stats: PartitionStats, week: date, now: datetime) -> Dict[str, Any]:
        county_name, state_code = partition.key
        return {
            "id": uuid.uuid4(),
            "county_name": county_name,
            "state_code": state_code,
            "fuel_type": partition.fuel_type,
            "week_start": week,
            "median_price": stats.median_price,
            "min_price": stats.min_price,
            "max_price": stats.max_price,
            "avg_price": stats.avg_price,
            "supplier_count": stats.supplier_count,
            "data_points": stats.data_points,
            "zip_count": len(partition.zip_codes),
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
        county_name, state_code = partition.key
        return {
            "county_name": county_name,
            "state_code": state_code,
            "fuel_type": partition.fuel_type,
            "median_price": stats.median_price,
            "min_price": stats.min_price,
            "max_price": stats.max_price,
            "avg_price": stats.avg_price,
            "supplier_count": stats.supplier_count,
            "data_points": stats.data_points,
            "zip_prefixes": self._prefixes(partition),
            "zip_count": len(partition.zip_codes),
            "weeks_available": trend.weeks_available,
            "percent_change_6w": trend.percent_change_6w,
            "first_week_price": trend.first_week_price,
            "latest_week_price": trend.latest_week_price,
            "data_quality_score": score,
            "last_scrape_at": stats.last_observed_at,
            "computed_at": now,
        }
