"""Price observation validity tests"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from price_intel.core.errors import ObservationValidationError, SupplierNotFound
from price_intel.models.observation import PriceObservation
from price_intel.models.stats import ZipCurrentStats
from price_intel.schemas.observations import ObservationIn
from price_intel.services.observation_service import ObservationService
from price_intel.services.zip_aggregator import ZipAggregator

from .conftest import NOW


def _obs(supplier, price="3.499", source_type="scraped", **fields):
    return ObservationIn(
        supplier_id=supplier.id,
        price_per_unit=Decimal(price),
        source_type=source_type,
        **fields,
    )


class TestIngestValidation:
    """Test rejection of malformed observations"""

    @pytest.fixture
    def service(self, db, clock):
        return ObservationService(db, clock)

    @pytest.fixture
    def supplier(self, make_supplier):
        return make_supplier("Acme Oil", ["10501"])

    @pytest.mark.parametrize("price", ["1.499", "8.001", "0.000", "-3.000"])
    def test_out_of_range_rejected(self, service, supplier, price):
        """Test prices outside the range are rejected, never clamped"""
        with pytest.raises(ObservationValidationError) as exc:
            service.ingest(_obs(supplier, price))
        assert exc.value.field == "price_per_unit"

    @pytest.mark.parametrize("price", ["1.500", "8.000"])
    def test_bounds_inclusive(self, service, supplier, price):
        """Test the range is closed at both ends"""
        row = service.ingest(_obs(supplier, price))
        assert row.price_per_unit == Decimal(price)

    def test_too_many_decimals(self, service, supplier):
        """Test sub-tenth-of-a-cent precision is rejected"""
        with pytest.raises(ObservationValidationError):
            service.ingest(_obs(supplier, "3.4999"))

    def test_unknown_source_type(self, service, supplier):
        """Test unknown source tags are rejected"""
        with pytest.raises(ObservationValidationError) as exc:
            service.ingest(_obs(supplier, source_type="crowd_guess"))
        assert exc.value.field == "source_type"

    def test_expiry_must_follow_observation(self, service, supplier):
        """Test expires_at before observed_at is rejected"""
        with pytest.raises(ObservationValidationError):
            service.ingest(_obs(supplier, observed_at=NOW, expires_at=NOW - timedelta(minutes=1)))

    def test_unknown_supplier(self, service):
        """Test observations for unknown suppliers are rejected"""
        with pytest.raises(SupplierNotFound):
            service.ingest(ObservationIn(supplier_id=uuid.uuid4(), price_per_unit=Decimal("3.0"), source_type="manual"))


class TestIngestLifecycle:
    """Test TTLs and supersession"""

    @pytest.fixture
    def service(self, db, clock):
        return ObservationService(db, clock)

    @pytest.fixture
    def supplier(self, make_supplier):
        return make_supplier("Acme Oil", ["10501"])

    @pytest.mark.parametrize(
        "source_type,hours",
        [
            ("scraped", 24),
            ("user_reported", 24),
            ("aggregator_signal", 24),
            ("manual", 48),
            ("supplier_verified", 48),
        ],
    )
    def test_default_ttl(self, service, supplier, source_type, hours):
        """Test expiry defaults by source type"""
        row = service.ingest(_obs(supplier, source_type=source_type))
        assert row.observed_at == NOW
        assert row.expires_at == NOW + timedelta(hours=hours)

    def test_new_observation_supersedes(self, db, clock, service, supplier):
        """Test a newer price invalidates the previous one"""
        first = service.ingest(_obs(supplier, "3.499"))
        clock.advance(hours=2)
        second = service.ingest(_obs(supplier, "3.399"))

        db.expire_all()
        assert first.is_valid is False
        assert first.superseded_at == NOW + timedelta(hours=2)
        assert second.is_valid is True

        valid = db.execute(
            select(PriceObservation).where(PriceObservation.is_valid.is_(True))
        ).scalars().all()
        assert [r.id for r in valid] == [second.id]

    def test_other_fuel_type_not_superseded(self, db, service, supplier):
        """Test supersession is scoped to the fuel type"""
        oil = service.ingest(_obs(supplier, "3.499"))
        kero = service.ingest(_obs(supplier, "4.199", fuel_type="kerosene"))
        db.expire_all()
        assert oil.is_valid and kero.is_valid

    def test_out_of_order_stored_superseded(self, db, service, supplier):
        """Test an older late-arriving price does not replace the newer one"""
        newer = service.ingest(_obs(supplier, "3.499", observed_at=NOW - timedelta(hours=1)))
        late = service.ingest(_obs(supplier, "3.599", observed_at=NOW - timedelta(hours=5)))

        db.expire_all()
        assert newer.is_valid is True
        assert late.is_valid is False
        assert late.superseded_at == NOW - timedelta(hours=1)

    def test_signal_does_not_supersede_consumer_price(self, db, clock, geo, service, supplier):
        """Test an aggregator signal leaves the displayed price valid"""
        verified = service.ingest(_obs(supplier, "3.500", source_type="supplier_verified"))
        clock.advance(hours=1)
        signal = service.ingest(_obs(supplier, "2.900", source_type="aggregator_signal"))

        db.expire_all()
        assert verified.is_valid is True
        assert verified.superseded_at is None
        assert signal.is_valid is True
        assert service.latest_valid(supplier.id).id == verified.id

        assert ZipAggregator(db, clock, geo).compute().updated == 1
        assert db.get(ZipCurrentStats, ("105", "heating_oil")).median_price == Decimal("3.500")

    def test_signal_supersedes_earlier_signal(self, db, clock, service, supplier):
        """Test signals replace each other without touching consumer prices"""
        scraped = service.ingest(_obs(supplier, "3.499"))
        first = service.ingest(_obs(supplier, "2.900", source_type="aggregator_signal"))
        clock.advance(hours=1)
        second = service.ingest(_obs(supplier, "2.950", source_type="aggregator_signal"))

        db.expire_all()
        assert first.is_valid is False
        assert first.superseded_at == NOW + timedelta(hours=1)
        assert second.is_valid is True
        assert scraped.is_valid is True

    def test_consumer_price_supersedes_across_sources(self, db, clock, service, supplier):
        """Test a scraped price replaces a supplier-verified one"""
        verified = service.ingest(_obs(supplier, "3.500", source_type="supplier_verified"))
        clock.advance(hours=1)
        scraped = service.ingest(_obs(supplier, "3.450"))

        db.expire_all()
        assert verified.is_valid is False
        assert scraped.is_valid is True


class TestValidityQueries:
    """Test the aggregation validity filter"""

    def test_expired_and_signals_excluded(self, db, clock, make_supplier, add_price):
        """Test expired rows and aggregator signals never count"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        c = make_supplier("C Fuel", ["10503"])
        fresh = add_price(a, "3.500")
        add_price(b, "3.600", observed_at=NOW - timedelta(hours=30))
        add_price(c, "2.900", source_type="aggregator_signal")

        rows = ObservationService(db, clock).valid_observations()
        assert [r.id for r in rows] == [fresh.id]

    def test_expiry_boundary_exclusive(self, db, clock, make_supplier, add_price):
        """Test a row is no longer valid at exactly expires_at"""
        a = make_supplier("A Fuel", ["10501"])
        add_price(a, "3.500", observed_at=NOW - timedelta(hours=24), expires_at=NOW)
        assert ObservationService(db, clock).valid_observations() == []

    def test_historical_includes_later_superseded(self, db, clock, make_supplier, add_price):
        """Test as-of validity sees rows superseded after that instant"""
        a = make_supplier("A Fuel", ["10501"])
        past = NOW - timedelta(days=3)
        old = add_price(
            a, "3.500",
            observed_at=past - timedelta(hours=2),
            is_valid=False,
            superseded_at=past + timedelta(hours=4),
        )
        rejected = add_price(a, "7.900", observed_at=past - timedelta(hours=1), is_valid=False)

        service = ObservationService(db, clock)
        ids = [r.id for r in service.valid_observations(as_of=past, historical=True)]
        assert ids == [old.id]
        assert rejected.id not in ids
        assert service.valid_observations(as_of=past) == []


class TestReconcileAndInvalidate:
    """Test expired-price recovery and data-quality invalidation"""

    def test_reconcile_extends_recent_expired(self, db, clock, make_supplier, add_price):
        """Test recently-scraped expired rows get 48h more, old ones do not"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        recent = add_price(a, "3.500", observed_at=NOW - timedelta(hours=30))
        stale = add_price(b, "3.600", observed_at=NOW - timedelta(days=10))

        service = ObservationService(db, clock)
        assert service.reconcile_expired() == 1
        assert service.reconcile_expired() == 0

        db.expire_all()
        assert recent.expires_at == NOW + timedelta(hours=48)
        assert stale.expires_at == NOW - timedelta(days=9)

    def test_invalidate_and_latest_valid(self, db, clock, make_supplier):
        """Test a rejected price disappears from the last-known-price read"""
        a = make_supplier("A Fuel", ["10501"])
        service = ObservationService(db, clock)
        row = service.ingest(_obs(a, "3.500"))
        assert service.latest_valid(a.id).id == row.id

        service.invalidate(row.id, "typo: should be 3.050")
        assert service.latest_valid(a.id) is None
        db.expire_all()
        assert row.superseded_at is None
        assert "typo" in row.notes

    def test_reconcile_only_after_gap_start(self, db, clock, make_supplier, add_price):
        """Test rows that expired before the given instant are left alone"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        during = add_price(a, "3.500", observed_at=NOW - timedelta(hours=30))
        before = add_price(b, "3.600", observed_at=NOW - timedelta(hours=60))

        service = ObservationService(db, clock)
        assert service.reconcile_expired(expired_after=NOW - timedelta(hours=30)) == 1

        db.expire_all()
        assert during.expires_at == NOW + timedelta(hours=48)
        assert before.expires_at == NOW - timedelta(hours=36)


class TestScrapeGap:
    """Test detection of missed pipeline runs"""

    def test_no_observations(self, db, clock):
        """Test an empty ledger has no gap"""
        service = ObservationService(db, clock)
        assert service.last_scrape_at() is None
        assert service.scrape_gap_start() is None

    def test_recent_scrape_is_no_gap(self, db, clock, make_supplier, add_price):
        """Test one supplier scraped recently means runs are happening"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        add_price(a, "3.500", observed_at=NOW - timedelta(hours=2))
        add_price(b, "3.600", observed_at=NOW - timedelta(hours=40))

        service = ObservationService(db, clock)
        assert service.last_scrape_at() == NOW - timedelta(hours=2)
        assert service.scrape_gap_start() is None

    def test_gap_starts_at_last_scrape(self, db, clock, make_supplier, add_price):
        """Test the gap starts at the latest scrape; other sources do not count"""
        a = make_supplier("A Fuel", ["10501"])
        b = make_supplier("B Fuel", ["10502"])
        add_price(a, "3.500", observed_at=NOW - timedelta(hours=30))
        add_price(b, "3.600", observed_at=NOW - timedelta(hours=1), source_type="manual")

        assert ObservationService(db, clock).scrape_gap_start() == NOW - timedelta(hours=30)

    def test_gap_threshold_inclusive(self, db, clock, make_supplier, add_price):
        """Test exactly a day without scraping already counts as a gap"""
        a = make_supplier("A Fuel", ["10501"])
        add_price(a, "3.500", observed_at=NOW - timedelta(hours=24))
        assert ObservationService(db, clock).scrape_gap_start() == NOW - timedelta(hours=24)
