"""Fetch result intake tests"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from price_intel.ingestion.fetch_results import FetchResultProcessor
from price_intel.models.observation import PriceObservation
from price_intel.models.supplier import ScrapeStatus
from price_intel.schemas.observations import FetchResult

from .conftest import NOW


class TestFetchResultProcessor:
    """Test scraper outcomes feeding health and observations"""

    @pytest.fixture
    def processor(self, db, clock):
        return FetchResultProcessor(db, clock)

    @pytest.fixture
    def supplier(self, make_supplier):
        return make_supplier("Acme Oil", ["10501"])

    def test_success_ingests_and_resets_failures(self, db, processor, supplier):
        """Test a good fetch stores a price and clears the failure streak"""
        processor.process(FetchResult(supplier_id=supplier.id, success=False, error="timeout"))
        assert processor.process(FetchResult(supplier_id=supplier.id, success=True, price=Decimal("3.459")))

        db.expire_all()
        assert supplier.consecutive_scrape_failures == 0
        assert supplier.last_scrape_failure_at == NOW

        rows = db.execute(select(PriceObservation)).scalars().all()
        assert len(rows) == 1
        assert rows[0].observed_at == NOW
        assert rows[0].price_per_unit == Decimal("3.459")
        assert rows[0].source_type == "scraped"

    def test_failures_lead_to_cooldown(self, db, processor, supplier):
        """Test repeated failed fetches put the supplier into cooldown"""
        for _ in range(3):
            assert not processor.process(FetchResult(supplier_id=supplier.id, success=False))

        db.expire_all()
        assert supplier.scrape_status == ScrapeStatus.COOLDOWN.value
        assert db.execute(select(PriceObservation)).scalars().all() == []

    def test_out_of_range_price_counts_as_failure(self, db, processor, supplier):
        """Test a scraped price outside the range is rejected and hurts health"""
        assert not processor.process(FetchResult(supplier_id=supplier.id, success=True, price=Decimal("12.500")))

        db.expire_all()
        assert supplier.consecutive_scrape_failures == 1
        assert db.execute(select(PriceObservation)).scalars().all() == []

    def test_success_without_price_is_failure(self, db, processor, supplier):
        """Test a fetch that extracted nothing is a failure"""
        assert not processor.process(FetchResult(supplier_id=supplier.id, success=True))
        db.expire_all()
        assert supplier.consecutive_scrape_failures == 1

    def test_batch_counts(self, processor, supplier, make_supplier):
        """Test batch processing tallies each outcome"""
        other = make_supplier("Other Oil", ["10502"])
        counts = processor.process_batch([
            FetchResult(supplier_id=supplier.id, success=True, price=Decimal("3.299")),
            FetchResult(supplier_id=other.id, success=True, price=Decimal("0.990")),
            FetchResult(supplier_id=other.id, success=False, error="HTTP 503"),
            FetchResult(supplier_id=uuid.uuid4(), success=True, price=Decimal("3.100")),
        ])
        assert counts == {"processed": 4, "ingested": 1, "rejected": 1, "failures": 2}
