"""Post-run validation of county stats against a from-scratch recomputation."""

from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock
from price_intel.core.config import settings
from price_intel.core.db import infrastructure_guard
from price_intel.core.logging import get_logger
from price_intel.models.geo import ZipToCounty
from price_intel.models.observation import PriceObservation, SourceType
from price_intel.models.stats import CountyCurrentStats, ZipCurrentStats
from price_intel.models.supplier import Supplier

log = get_logger("validation_service")


@dataclass
class ValidationReport:
    fuel_type: str
    checked: int = 0
    mismatches: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fuel_type": self.fuel_type,
            "checked": self.checked,
            "mismatches": list(self.mismatches),
            "ok": self.ok,
        }


class ValidationService:
    """Recomputes county medians and supplier counts straight from the ledger.

    Shares no code with the aggregators.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.tolerance = Decimal(str(settings.VALIDATION_PRICE_TOLERANCE))

    def _county_suppliers(self) -> Dict[Tuple[str, str], Set[Any]]:
        mapping = {
            row.zip_code: (row.county_name, row.state_code)
            for row in self.db.execute(select(ZipToCounty)).scalars()
        }
        counties: Dict[Tuple[str, str], Set[Any]] = defaultdict(set)
        for supplier in self.db.execute(select(Supplier).where(Supplier.active.is_(True))).scalars():
            for zip_code in supplier.postal_codes_served or []:
                key = mapping.get(str(zip_code).strip())
                if key:
                    counties[key].add(supplier.id)
        return counties

    def _prices_by_supplier(self, fuel_type: str) -> Dict[Any, List[Decimal]]:
        now = self.clock.now()
        stmt = select(PriceObservation.supplier_id, PriceObservation.price_per_unit).where(
            PriceObservation.fuel_type == fuel_type,
            PriceObservation.is_valid.is_(True),
            PriceObservation.source_type != SourceType.AGGREGATOR_SIGNAL.value,
            PriceObservation.observed_at <= now,
            PriceObservation.expires_at > now,
        )
        prices: Dict[Any, List[Decimal]] = defaultdict(list)
        for supplier_id, price in self.db.execute(stmt).all():
            prices[supplier_id].append(Decimal(price))
        return prices

    def validate_counties(self, fuel_type: str = "heating_oil") -> ValidationReport:
        report = ValidationReport(fuel_type=fuel_type)

        with infrastructure_guard("validate: loading"):
            counties = self._county_suppliers()
            prices = self._prices_by_supplier(fuel_type)
            stored = {
                (row.county_name, row.state_code): row
                for row in self.db.execute(
                    select(CountyCurrentStats).where(CountyCurrentStats.fuel_type == fuel_type)
                ).scalars()
            }
            zip_counts = {
                row.zip_prefix: row.supplier_count
                for row in self.db.execute(
                    select(ZipCurrentStats).where(ZipCurrentStats.fuel_type == fuel_type)
                ).scalars()
            }

        for key in sorted(counties):
            supplier_ids = counties[key]
            county_prices = [p for sid in supplier_ids for p in prices.get(sid, [])]
            if not county_prices:
                continue

            label = f"{key[0]}, {key[1]}"
            report.checked += 1
            row = stored.get(key)
            if row is None:
                report.mismatches.append({"county": label, "issue": "missing_current_stats"})
                continue

            expected_median = Decimal(statistics.median(county_prices))
            expected_suppliers = len({sid for sid in supplier_ids if prices.get(sid)})

            if abs(Decimal(row.median_price) - expected_median) > self.tolerance:
                report.mismatches.append({
                    "county": label,
                    "issue": "median_mismatch",
                    "stored": str(row.median_price),
                    "expected": str(expected_median),
                })
            if row.supplier_count != expected_suppliers:
                report.mismatches.append({
                    "county": label,
                    "issue": "supplier_count_mismatch",
                    "stored": row.supplier_count,
                    "expected": expected_suppliers,
                })

            zip_total = sum(zip_counts.get(prefix, 0) for prefix in (row.zip_prefixes or []))
            if row.supplier_count > zip_total:
                report.mismatches.append({
                    "county": label,
                    "issue": "exceeds_zip_supplier_total",
                    "stored": row.supplier_count,
                    "zip_total": zip_total,
                })

        if report.ok:
            log.info(f"Validation passed for {report.checked} counties ({fuel_type})")
        else:
            for mismatch in report.mismatches:
                log.error(f"Validation mismatch: {mismatch}")
        return report
