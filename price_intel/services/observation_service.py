"""Price observation store: ingestion, supersession, expiry and recovery."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock, ensure_utc
from price_intel.core.config import settings
from price_intel.core.errors import ObservationValidationError, SupplierNotFound
from price_intel.core.logging import get_logger
from price_intel.models.observation import FuelType, PriceObservation, SourceType
from price_intel.models.supplier import Supplier
from price_intel.schemas.observations import ObservationIn

log = get_logger("observation_service")

PRICE_QUANTUM = Decimal("0.001")


def ttl_for(source_type: SourceType) -> timedelta:
    """Default time-to-live of an observation by where it came from."""
    hours = {
        SourceType.SCRAPED: settings.TTL_HOURS_SCRAPED,
        SourceType.USER_REPORTED: settings.TTL_HOURS_USER_REPORTED,
        SourceType.AGGREGATOR_SIGNAL: settings.TTL_HOURS_AGGREGATOR_SIGNAL,
        SourceType.MANUAL: settings.TTL_HOURS_MANUAL,
        SourceType.SUPPLIER_VERIFIED: settings.TTL_HOURS_SUPPLIER_VERIFIED,
    }[source_type]
    return timedelta(hours=hours)


def _same_channel(source_type: str):
    """Signals only compete with signals; every other source competes with the rest."""
    if source_type == SourceType.AGGREGATOR_SIGNAL.value:
        return PriceObservation.source_type == SourceType.AGGREGATOR_SIGNAL.value
    return PriceObservation.source_type != SourceType.AGGREGATOR_SIGNAL.value


class ObservationService:
    """Owns the validity lifecycle of ``PriceObservation`` rows.

    Responsibilities:
    - Validate and store incoming prices (never clamp)
    - Keep one valid observation per supplier and fuel type (signals apart)
    - Extend recently-scraped prices that expired due to missed runs
    - Provide the validity query both aggregators consume
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------
    def _validate(self, obs: ObservationIn, now: datetime) -> Dict[str, Any]:
        try:
            source_type = SourceType(obs.source_type)
        except ValueError:
            raise ObservationValidationError(
                f"Unknown source_type {obs.source_type!r}", field="source_type"
            ) from None

        try:
            fuel_type = FuelType(obs.fuel_type)
        except ValueError:
            raise ObservationValidationError(
                f"Unknown fuel_type {obs.fuel_type!r}", field="fuel_type"
            ) from None

        try:
            price = Decimal(obs.price_per_unit)
        except (InvalidOperation, TypeError, ValueError):
            raise ObservationValidationError("price_per_unit is not a number", field="price_per_unit") from None
        if not price.is_finite():
            raise ObservationValidationError("price_per_unit is not a number", field="price_per_unit")

        low = Decimal(str(settings.PRICE_MIN))
        high = Decimal(str(settings.PRICE_MAX))
        if price < low or price > high:
            raise ObservationValidationError(
                f"price_per_unit {price} outside [{low}, {high}]", field="price_per_unit"
            )
        if price != price.quantize(PRICE_QUANTUM):
            raise ObservationValidationError(
                f"price_per_unit {price} has more than 3 decimals", field="price_per_unit"
            )

        min_quantity = obs.min_quantity if obs.min_quantity is not None else settings.DEFAULT_MIN_QUANTITY
        if min_quantity < 0:
            raise ObservationValidationError("min_quantity must be >= 0", field="min_quantity")

        observed_at = ensure_utc(obs.observed_at) if obs.observed_at else now
        expires_at = ensure_utc(obs.expires_at) if obs.expires_at else observed_at + ttl_for(source_type)
        if expires_at <= observed_at:
            raise ObservationValidationError("expires_at must be after observed_at", field="expires_at")

        return {
            "supplier_id": obs.supplier_id,
            "price_per_unit": price,
            "min_quantity": min_quantity,
            "fuel_type": fuel_type.value,
            "source_type": source_type.value,
            "source_url": obs.source_url,
            "observed_at": observed_at,
            "expires_at": expires_at,
            "notes": obs.notes,
        }

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def ingest(self, obs: ObservationIn) -> PriceObservation:
        """Store a validated observation, superseding the previous valid one.

        Aggregator signals and consumer-facing prices are superseded
        separately: a signal never replaces a price shown to consumers.
        An observation older than the current valid row is stored already
        superseded so the most recent reading stays the single valid one.
        """
        now = self.clock.now()
        values = self._validate(obs, now)

        if self.db.get(Supplier, values["supplier_id"]) is None:
            raise SupplierNotFound(values["supplier_id"])

        try:
            current = self.db.execute(
                select(PriceObservation)
                .where(PriceObservation.supplier_id == values["supplier_id"])
                .where(PriceObservation.fuel_type == values["fuel_type"])
                .where(PriceObservation.is_valid.is_(True))
                .where(_same_channel(values["source_type"]))
                .with_for_update()
            ).scalars().all()

            newer = [row for row in current if row.observed_at > values["observed_at"]]
            row = PriceObservation(**values)

            if newer:
                row.is_valid = False
                row.superseded_at = min(r.observed_at for r in newer)
                log.info(
                    f"Out-of-order observation for supplier {values['supplier_id']} "
                    f"({values['observed_at'].isoformat()}); stored as superseded"
                )
            else:
                for old in current:
                    old.is_valid = False
                    old.superseded_at = values["observed_at"]
                # Release the partial unique index slot before inserting
                self.db.flush()

            self.db.add(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        log.debug(
            f"Ingested {row.source_type} price {row.price_per_unit} for supplier {row.supplier_id} "
            f"(expires {row.expires_at.isoformat()})"
        )
        return row

    def reconcile_expired(self, expired_after: Optional[datetime] = None) -> int:
        """Extend recently-scraped valid prices that expired because a run was missed.

        With ``expired_after`` only rows that expired after that instant are
        extended. Safe to run repeatedly: extended rows no longer match the
        expired filter.
        """
        now = self.clock.now()
        trust_from = now - timedelta(hours=settings.RECONCILE_TRUST_WINDOW_HOURS)
        new_expiry = now + timedelta(hours=settings.RECONCILE_EXTENSION_HOURS)

        stmt = (
            update(PriceObservation)
            .where(PriceObservation.is_valid.is_(True))
            .where(PriceObservation.observed_at >= trust_from)
            .where(PriceObservation.expires_at <= now)
        )
        if expired_after is not None:
            stmt = stmt.where(PriceObservation.expires_at > ensure_utc(expired_after))
        stmt = stmt.values(expires_at=new_expiry).execution_options(synchronize_session=False)
        try:
            count = self.db.execute(stmt).rowcount or 0
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if count:
            log.info(f"Reconciled {count} expired observations; new expiry {new_expiry.isoformat()}")
        return count

    def invalidate(self, observation_id: Any, reason: str) -> PriceObservation:
        """Data-quality rejection: flip ``is_valid`` off without marking supersession."""
        obs_id = observation_id if isinstance(observation_id, uuid.UUID) else uuid.UUID(str(observation_id))
        row = self.db.get(PriceObservation, obs_id)
        if row is None:
            raise ObservationValidationError(f"Observation {observation_id} not found", field="id")

        row.is_valid = False
        row.notes = f"{row.notes}; invalidated: {reason}" if row.notes else f"invalidated: {reason}"
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.warning(f"Observation {obs_id} invalidated: {reason}")
        return row

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def last_scrape_at(self) -> Optional[datetime]:
        """Most recent scraped observation across all suppliers."""
        stmt = select(func.max(PriceObservation.observed_at)).where(
            PriceObservation.source_type == SourceType.SCRAPED.value
        )
        latest = self.db.execute(stmt).scalar_one_or_none()
        return ensure_utc(latest) if latest is not None else None

    def scrape_gap_start(self) -> Optional[datetime]:
        """Start of a scheduling gap, or None if scraping is current.

        A gap means no supplier at all was scraped for ``RECONCILE_GAP_HOURS``,
        which points at the pipeline rather than at individual suppliers.
        """
        latest = self.last_scrape_at()
        if latest is None:
            return None
        if self.clock.now() - latest < timedelta(hours=settings.RECONCILE_GAP_HOURS):
            return None
        return latest

    def latest_valid(self, supplier_id: Any, fuel_type: str = "heating_oil") -> Optional[PriceObservation]:
        """Last known displayable price for a supplier, ignoring expiry."""
        sid = supplier_id if isinstance(supplier_id, uuid.UUID) else uuid.UUID(str(supplier_id))
        stmt = (
            select(PriceObservation)
            .where(PriceObservation.supplier_id == sid)
            .where(PriceObservation.fuel_type == fuel_type)
            .where(PriceObservation.is_valid.is_(True))
            .where(PriceObservation.source_type != SourceType.AGGREGATOR_SIGNAL.value)
            .order_by(PriceObservation.observed_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def valid_observations(
        self,
        fuel_type: str = "heating_oil",
        as_of: Optional[datetime] = None,
        historical: bool = False,
    ) -> List[PriceObservation]:
        """Observations valid for aggregation at ``as_of`` (default: now).

        With ``historical`` the check is as-of: rows superseded after
        ``as_of`` still count, rows rejected for data quality never do.
        """
        at = ensure_utc(as_of) if as_of else self.clock.now()

        if historical:
            validity = or_(
                PriceObservation.is_valid.is_(True),
                and_(
                    PriceObservation.superseded_at.is_not(None),
                    PriceObservation.superseded_at > at,
                ),
            )
        else:
            validity = PriceObservation.is_valid.is_(True)

        stmt = (
            select(PriceObservation)
            .where(PriceObservation.fuel_type == fuel_type)
            .where(PriceObservation.source_type != SourceType.AGGREGATOR_SIGNAL.value)
            .where(PriceObservation.observed_at <= at)
            .where(PriceObservation.expires_at > at)
            .where(validity)
            .order_by(PriceObservation.supplier_id, PriceObservation.observed_at)
        )
        return list(self.db.execute(stmt).scalars().all())
