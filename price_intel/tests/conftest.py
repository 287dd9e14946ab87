"""Shared fixtures: in-memory SQLite database, frozen clock and data factories."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "price_intel_test_logs"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from price_intel.core.clock import FixedClock
from price_intel.models import Base, PriceObservation, Supplier, ZipToCounty
from price_intel.services.geo_reference import ZipCountyMap

# Wednesday; the current week starts Monday 2026-10-12
NOW = datetime(2026, 10, 14, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def make_supplier(db):
    """Create and commit a supplier serving the given ZIPs."""

    def _make(name, zips, website="https://example.com", **fields):
        supplier = Supplier(
            name=name,
            website=website,
            postal_codes_served=list(zips),
            **fields,
        )
        db.add(supplier)
        db.commit()
        return supplier

    return _make


@pytest.fixture
def add_price(db):
    """Insert an observation row directly (no supersession), committed."""

    def _add(
        supplier,
        price,
        observed_at=None,
        expires_at=None,
        source_type="scraped",
        fuel_type="heating_oil",
        is_valid=True,
        superseded_at=None,
    ):
        observed_at = observed_at or NOW - timedelta(hours=1)
        row = PriceObservation(
            supplier_id=supplier.id,
            price_per_unit=Decimal(str(price)),
            fuel_type=fuel_type,
            source_type=source_type,
            observed_at=observed_at,
            expires_at=expires_at or observed_at + timedelta(hours=24),
            is_valid=is_valid,
            superseded_at=superseded_at,
        )
        db.add(row)
        db.commit()
        return row

    return _add


@pytest.fixture
def geo_rows(db):
    """Westchester/Putnam NY reference rows, committed to zip_to_county."""
    rows = [
        ("10501", "Westchester", "NY", "Amawalk"),
        ("10502", "Westchester", "NY", "Ardsley"),
        ("10503", "Westchester", "NY", "Ardsley on Hudson"),
        ("10512", "Putnam", "NY", "Carmel"),
        ("10516", "Putnam", "NY", "Cold Spring"),
        ("06810", "Fairfield", "CT", "Danbury"),
    ]
    for zip_code, county, state, city in rows:
        db.add(ZipToCounty(zip_code=zip_code, county_name=county, state_code=state, city=city))
    db.commit()
    return rows


@pytest.fixture
def geo(geo_rows):
    return ZipCountyMap.from_rows(geo_rows)
