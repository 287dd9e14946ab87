"""County aggregation and validation tests"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from price_intel.models.stats import CountyCurrentStats, CountyWeeklyStats
from price_intel.services.county_aggregator import CountyAggregator
from price_intel.services.validation_service import ValidationService
from price_intel.services.zip_aggregator import ZipAggregator

from .conftest import NOW

CURRENT_WEEK = date(2026, 10, 12)


def _row_values(row):
    return {c.name: getattr(row, c.key) for c in row.__table__.columns}


@pytest.fixture
def hudson_valley(make_supplier, add_price):
    """A straddles Westchester and Putnam; D only serves an unmapped ZIP."""
    a = make_supplier("A Fuel", ["10501", "10503", "10512"])
    b = make_supplier("B Fuel", ["10502"])
    c = make_supplier("C Fuel", ["10516"])
    d = make_supplier("D Fuel", ["99999"])
    add_price(a, "3.50")
    add_price(b, "3.70")
    add_price(c, "3.30")
    add_price(d, "3.00")
    return a, b, c, d


class TestCountyAggregator:
    """Test county stats computation"""

    def test_county_stats(self, db, clock, geo, hudson_valley):
        """Test county stats over the union of its suppliers' prices"""
        summary = CountyAggregator(db, clock, geo).compute()

        assert summary.total == 2
        assert summary.updated == 2
        assert summary.reference_gaps == ["99999"]

        db.expire_all()
        westchester = db.get(CountyCurrentStats, ("Westchester", "NY", "heating_oil"))
        assert westchester.median_price == Decimal("3.600")
        assert westchester.avg_price == Decimal("3.600")
        assert westchester.supplier_count == 2
        assert westchester.data_points == 2
        assert westchester.zip_prefixes == ["105"]
        assert westchester.zip_count == 3

        putnam = db.get(CountyCurrentStats, ("Putnam", "NY", "heating_oil"))
        assert putnam.median_price == Decimal("3.400")
        assert putnam.min_price == Decimal("3.300")
        assert putnam.max_price == Decimal("3.500")
        assert putnam.supplier_count == 2
        assert putnam.zip_count == 2

    def test_weekly_row_written(self, db, clock, geo, hudson_valley):
        """Test the current week's county row is recorded"""
        CountyAggregator(db, clock, geo).compute()
        rows = db.execute(select(CountyWeeklyStats).order_by(CountyWeeklyStats.county_name)).scalars().all()
        assert [(r.county_name, r.supplier_count) for r in rows] == [("Putnam", 2), ("Westchester", 2)]

    def test_rerun_is_idempotent(self, db, clock, geo, hudson_valley):
        """Test a second run in the same week leaves identical rows and one weekly row per county"""
        aggregator = CountyAggregator(db, clock, geo)
        aggregator.compute()
        db.expire_all()
        first = {
            (r.county_name, r.state_code): _row_values(r)
            for r in db.execute(select(CountyCurrentStats)).scalars()
        }

        summary = aggregator.compute()
        assert summary.updated == 2
        assert summary.failed == 0

        db.expire_all()
        second = {
            (r.county_name, r.state_code): _row_values(r)
            for r in db.execute(select(CountyCurrentStats)).scalars()
        }
        assert second == first
        assert second[("Westchester", "NY")]["zip_prefixes"] == ["105"]
        assert second[("Westchester", "NY")]["avg_price"] == Decimal("3.600")

        weekly = db.execute(select(CountyWeeklyStats)).scalars().all()
        assert sorted((r.county_name, r.state_code, r.week_start) for r in weekly) == [
            ("Putnam", "NY", CURRENT_WEEK),
            ("Westchester", "NY", CURRENT_WEEK),
        ]

    def test_unmapped_zip_only_excluded_from_counties(self, db, clock, geo, hudson_valley):
        """Test an unmapped ZIP still feeds ZIP stats"""
        zip_summary = ZipAggregator(db, clock, geo).compute()
        assert zip_summary.updated == 2  # 105 and 999

        county_summary = CountyAggregator(db, clock, geo).compute()
        assert county_summary.reference_gaps == ["99999"]
        assert county_summary.failed == 0

    def test_expired_prices_excluded(self, db, clock, geo, make_supplier, add_price):
        """Test expired prices drop out of county stats"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        add_price(a, "3.50")
        add_price(b, "3.90", observed_at=NOW - timedelta(hours=25))

        CountyAggregator(db, clock, geo).compute()
        db.expire_all()
        stats = db.get(CountyCurrentStats, ("Westchester", "NY", "heating_oil"))
        assert stats.supplier_count == 1
        assert stats.median_price == Decimal("3.500")

    def test_supplier_ceiling_violation_fails_partition(self, db, clock, geo, hudson_valley):
        """Test a county exceeding its prefixes' supplier total is a partition failure"""

        class Broken(CountyAggregator):
            def build_partitions(self, inputs, geo, summary):
                partitions = super().build_partitions(inputs, geo, summary)
                self._prefix_counts = {}
                return partitions

        summary = Broken(db, clock, geo).compute()
        assert summary.failed == 2
        assert summary.updated == 0
        assert "exceeds ZIP prefix total" in summary.fail_reasons["Westchester, NY"]
        assert db.get(CountyCurrentStats, ("Westchester", "NY", "heating_oil")) is None

    def test_county_backfill(self, db, clock, geo, make_supplier, add_price):
        """Test county backfill writes a completed week once"""
        last_week = (NOW - timedelta(weeks=1)).date() - timedelta(days=(NOW - timedelta(weeks=1)).weekday())
        a = make_supplier("A Fuel", ["10501"])
        add_price(a, "3.25", observed_at=NOW - timedelta(days=3), expires_at=NOW + timedelta(days=1))

        aggregator = CountyAggregator(db, clock, geo)
        assert aggregator.backfill_week(last_week).updated == 1
        assert aggregator.backfill_week(last_week).skip_reasons == {"Westchester, NY": "immutable_history"}


class TestValidationService:
    """Test county recomputation check"""

    def test_consistent_after_run(self, db, clock, geo, hudson_valley):
        """Test freshly computed stats validate cleanly"""
        ZipAggregator(db, clock, geo).compute()
        CountyAggregator(db, clock, geo).compute()

        report = ValidationService(db, clock).validate_counties()
        assert report.ok
        assert report.checked == 2

    def test_detects_tampered_median(self, db, clock, geo, hudson_valley):
        """Test a wrong stored median is reported"""
        ZipAggregator(db, clock, geo).compute()
        CountyAggregator(db, clock, geo).compute()

        row = db.get(CountyCurrentStats, ("Putnam", "NY", "heating_oil"))
        row.median_price = Decimal("3.450")
        db.commit()

        report = ValidationService(db, clock).validate_counties()
        assert not report.ok
        assert report.mismatches[0]["county"] == "Putnam, NY"
        assert report.mismatches[0]["issue"] == "median_mismatch"

    def test_detects_missing_county(self, db, clock, geo, hudson_valley):
        """Test a county with data but no stats row is reported"""
        report = ValidationService(db, clock).validate_counties()
        assert {m["issue"] for m in report.mismatches} == {"missing_current_stats"}
