"""Intake of scraper fetch results: health bookkeeping, then price ingestion."""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock
from price_intel.core.errors import ObservationValidationError, SupplierNotFound
from price_intel.core.logging import get_logger
from price_intel.models.observation import SourceType
from price_intel.schemas.observations import FetchResult, ObservationIn
from price_intel.services.observation_service import ObservationService
from price_intel.services.scrape_health import ScrapeHealthTracker

log = get_logger("ingestion.fetch_results")


class FetchResultProcessor:
    """Applies fetch outcomes to scrape health and the observation store.

    A fetch that reports success but yields no usable price counts as a
    failure for health purposes.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self.health = ScrapeHealthTracker(db, self.clock)
        self.observations = ObservationService(db, self.clock)

    def process(self, result: FetchResult) -> bool:
        """Returns True if a price was ingested."""
        if not result.success or result.price is None:
            reason = result.error or "no price extracted"
            log.info(f"Fetch failed for supplier {result.supplier_id}: {reason}")
            self.health.record_outcome(result.supplier_id, success=False)
            return False

        try:
            self.observations.ingest(
                ObservationIn(
                    supplier_id=result.supplier_id,
                    price_per_unit=result.price,
                    source_type=SourceType.SCRAPED.value,
                    fuel_type=result.fuel_type,
                    min_quantity=result.min_quantity,
                    source_url=result.source_url,
                    observed_at=result.observed_at,
                )
            )
        except ObservationValidationError as exc:
            log.warning(f"Rejected scraped price {result.price} for supplier {result.supplier_id}: {exc}")
            self.health.record_outcome(result.supplier_id, success=False)
            return False

        self.health.record_outcome(result.supplier_id, success=True)
        return True

    def process_batch(self, results: Iterable[FetchResult]) -> Dict[str, int]:
        counts = {"processed": 0, "ingested": 0, "rejected": 0, "failures": 0}
        for result in results:
            counts["processed"] += 1
            try:
                ingested = self.process(result)
            except SupplierNotFound as exc:
                log.warning(str(exc))
                counts["failures"] += 1
                continue

            if ingested:
                counts["ingested"] += 1
            elif result.success and result.price is not None:
                counts["rejected"] += 1
            else:
                counts["failures"] += 1

        log.info(
            f"Processed {counts['processed']} fetch results | ingested={counts['ingested']} "
            f"rejected={counts['rejected']} failures={counts['failures']}"
        )
        return counts
