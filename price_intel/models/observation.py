"""Append-mostly ledger of supplier price readings."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from price_intel.models.base import GUID, Base, UTCDateTime


class SourceType(str, Enum):
    SCRAPED = "scraped"
    MANUAL = "manual"
    USER_REPORTED = "user_reported"
    SUPPLIER_VERIFIED = "supplier_verified"
    # Competitive signal only: never displayed, never aggregated
    AGGREGATOR_SIGNAL = "aggregator_signal"


class FuelType(str, Enum):
    HEATING_OIL = "heating_oil"
    KEROSENE = "kerosene"
    PROPANE = "propane"


class PriceObservation(Base):
    """One price reading for a supplier and fuel type.

    Rows are never edited except to flip ``is_valid`` off (superseded or
    rejected) or to push ``expires_at`` forward during recovery.
    """

    __tablename__ = "price_observations"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)

    supplier_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("suppliers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False)
    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=150)
    fuel_type: Mapped[str] = mapped_column(String(20), nullable=False, default=FuelType.HEATING_OIL.value)
    source_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    source_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    observed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    # Set when a newer observation replaced this one; NULL for data-quality rejections
    superseded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("expires_at > observed_at", name="ck_price_observations_expiry_after_observed"),
        # At most one valid consumer-facing observation per supplier and fuel type;
        # aggregator signals keep their own single valid row
        Index(
            "uq_price_observations_one_valid",
            "supplier_id",
            "fuel_type",
            unique=True,
            postgresql_where=text("is_valid AND source_type <> 'aggregator_signal'"),
            sqlite_where=text("is_valid = 1 AND source_type <> 'aggregator_signal'"),
        ),
        Index(
            "uq_price_observations_one_valid_signal",
            "supplier_id",
            "fuel_type",
            unique=True,
            postgresql_where=text("is_valid AND source_type = 'aggregator_signal'"),
            sqlite_where=text("is_valid = 1 AND source_type = 'aggregator_signal'"),
        ),
        Index("ix_price_observations_fuel_valid_expiry", "fuel_type", "is_valid", "expires_at"),
    )
