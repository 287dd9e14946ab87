"""Derived read models: current snapshots and weekly history per ZIP prefix and county.

Current tables are overwritten on every run (upsert keyed by the composite
key). Weekly tables are append-only: once a week has ended its row is never
rewritten.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from price_intel.models.base import GUID, JSONType, Base, UTCDateTime


class ZipCurrentStats(Base):
    __tablename__ = "zip_current_stats"

    zip_prefix: Mapped[str] = mapped_column(String(3), primary_key=True)
    fuel_type: Mapped[str] = mapped_column(String(20), primary_key=True)

    region_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cities: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    median_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    supplier_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    weeks_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    percent_change_6w: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    first_week_price: Mapped[Decimal | None] = mapped_column(Numeric(5, 3), nullable=True)
    latest_week_price: Mapped[Decimal | None] = mapped_column(Numeric(5, 3), nullable=True)

    data_quality_score: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    last_scrape_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ZipWeeklyStats(Base):
    __tablename__ = "zip_weekly_stats"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)

    zip_prefix: Mapped[str] = mapped_column(String(3), nullable=False)
    fuel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)

    median_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    supplier_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("zip_prefix", "fuel_type", "week_start", name="uq_zip_weekly_stats_key"),
        Index("ix_zip_weekly_stats_prefix_fuel_week", "zip_prefix", "fuel_type", "week_start"),
    )


class CountyCurrentStats(Base):
    __tablename__ = "county_current_stats"

    county_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    state_code: Mapped[str] = mapped_column(String(2), primary_key=True)
    fuel_type: Mapped[str] = mapped_column(String(20), primary_key=True)

    median_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    avg_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    supplier_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Provenance: which served ZIPs fed this county
    zip_prefixes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    zip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    weeks_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    percent_change_6w: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    first_week_price: Mapped[Decimal | None] = mapped_column(Numeric(5, 3), nullable=True)
    latest_week_price: Mapped[Decimal | None] = mapped_column(Numeric(5, 3), nullable=True)

    data_quality_score: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    last_scrape_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class CountyWeeklyStats(Base):
    __tablename__ = "county_weekly_stats"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)

    county_name: Mapped[str] = mapped_column(String(100), nullable=False)
    state_code: Mapped[str] = mapped_column(String(2), nullable=False)
    fuel_type: Mapped[str] = mapped_column(String(20), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)

    median_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    avg_price: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    supplier_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    zip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("county_name", "state_code", "fuel_type", "week_start", name="uq_county_weekly_stats_key"),
        Index("ix_county_weekly_stats_county_fuel_week", "county_name", "state_code", "fuel_type", "week_start"),
    )
