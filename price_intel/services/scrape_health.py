"""Scrape health tracking: per-supplier failure counting with exponential backoff.

The state machine is pure (``apply_outcome`` / ``check_eligibility``) so it
can be reasoned about without a database; ``ScrapeHealthTracker`` persists
it on the ``suppliers`` row under a row lock.

    ACTIVE --failure (n >= cooldown threshold)--> COOLDOWN
    COOLDOWN --eligibility check after cooldown_until--> ACTIVE
    any --failure (n >= disable threshold)--> DISABLED
    any but DISABLED --success--> ACTIVE (n = 0)
    DISABLED --reenable--> ACTIVE
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from price_intel.core.clock import Clock, SystemClock
from price_intel.core.config import settings
from price_intel.core.errors import SupplierNotFound
from price_intel.core.logging import get_logger
from price_intel.models.supplier import ScrapeStatus, Supplier

log = get_logger("scrape_health")


@dataclass(frozen=True)
class ScrapeHealthState:
    status: ScrapeStatus = ScrapeStatus.ACTIVE
    consecutive_failures: int = 0
    last_failure_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None


@dataclass(frozen=True)
class BackoffPolicy:
    cooldown_threshold: int = 3
    disable_threshold: int = 6
    base_hours: float = 6.0
    max_hours: float = 168.0

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            cooldown_threshold=settings.SCRAPE_COOLDOWN_THRESHOLD,
            disable_threshold=settings.SCRAPE_DISABLE_THRESHOLD,
            base_hours=settings.SCRAPE_BACKOFF_BASE_HOURS,
            max_hours=settings.SCRAPE_BACKOFF_MAX_HOURS,
        )

    def backoff(self, failures: int) -> timedelta:
        """Cooldown length after ``failures`` consecutive failures (doubling, capped)."""
        exponent = max(0, failures - self.cooldown_threshold)
        hours = min(self.max_hours, self.base_hours * (2 ** exponent))
        return timedelta(hours=hours)


def apply_outcome(
    state: ScrapeHealthState,
    success: bool,
    now: datetime,
    policy: BackoffPolicy = BackoffPolicy(),
) -> ScrapeHealthState:
    """Next state after a fetch outcome. DISABLED ignores outcomes."""
    if state.status == ScrapeStatus.DISABLED:
        return state

    if success:
        return replace(
            state,
            status=ScrapeStatus.ACTIVE,
            consecutive_failures=0,
            cooldown_until=None,
        )

    failures = state.consecutive_failures + 1
    if failures >= policy.disable_threshold:
        return ScrapeHealthState(ScrapeStatus.DISABLED, failures, now, None)
    if failures >= policy.cooldown_threshold:
        return ScrapeHealthState(ScrapeStatus.COOLDOWN, failures, now, now + policy.backoff(failures))
    return ScrapeHealthState(ScrapeStatus.ACTIVE, failures, now, None)


def check_eligibility(state: ScrapeHealthState, now: datetime) -> Tuple[bool, ScrapeHealthState]:
    """Whether a fetch may be attempted; an elapsed cooldown moves back to ACTIVE.

    The failure count is kept so the next failure goes straight back into a
    longer cooldown.
    """
    if state.status == ScrapeStatus.ACTIVE:
        return True, state
    if state.status == ScrapeStatus.COOLDOWN:
        if state.cooldown_until is None or now >= state.cooldown_until:
            return True, replace(state, status=ScrapeStatus.ACTIVE, cooldown_until=None)
        return False, state
    return False, state


def _state_of(supplier: Supplier) -> ScrapeHealthState:
    return ScrapeHealthState(
        status=ScrapeStatus(supplier.scrape_status),
        consecutive_failures=supplier.consecutive_scrape_failures or 0,
        last_failure_at=supplier.last_scrape_failure_at,
        cooldown_until=supplier.scrape_cooldown_until,
    )


def _store(supplier: Supplier, state: ScrapeHealthState) -> None:
    supplier.scrape_status = state.status.value
    supplier.consecutive_scrape_failures = state.consecutive_failures
    supplier.last_scrape_failure_at = state.last_failure_at
    supplier.scrape_cooldown_until = state.cooldown_until


def _as_uuid(supplier_id: Any) -> uuid.UUID:
    return supplier_id if isinstance(supplier_id, uuid.UUID) else uuid.UUID(str(supplier_id))


class ScrapeHealthTracker:
    """Persists scrape health transitions on supplier rows."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.policy = policy or BackoffPolicy.from_settings()

    def _locked_supplier(self, supplier_id: Any) -> Supplier:
        stmt = select(Supplier).where(Supplier.id == _as_uuid(supplier_id)).with_for_update()
        supplier = self.db.execute(stmt).scalar_one_or_none()
        if supplier is None:
            raise SupplierNotFound(supplier_id)
        return supplier

    # -------------------------------------------------------------------------
    # Outcomes & eligibility
    # -------------------------------------------------------------------------
    def record_outcome(self, supplier_id: Any, success: bool) -> ScrapeHealthState:
        """Apply a fetch outcome atomically (read-modify-write under a row lock)."""
        now = self.clock.now()
        try:
            supplier = self._locked_supplier(supplier_id)
            before = _state_of(supplier)
            after = apply_outcome(before, success, now, self.policy)
            _store(supplier, after)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if before.status == ScrapeStatus.DISABLED:
            log.debug(f"Ignored {'success' if success else 'failure'} for disabled supplier {supplier.name}")
        elif before.status != after.status:
            log.info(
                f"Scrape status {supplier.name}: {before.status.value} -> {after.status.value} "
                f"| failures={after.consecutive_failures} cooldown_until={after.cooldown_until}"
            )
            if after.status == ScrapeStatus.DISABLED:
                log.warning(f"Supplier {supplier.name} disabled after {after.consecutive_failures} consecutive failures")
        elif not success:
            log.debug(f"Scrape failure {after.consecutive_failures} for {supplier.name}")
        return after

    def is_eligible_for_scrape(self, supplier_id: Any) -> bool:
        """Eligibility check that persists an elapsed cooldown's return to ACTIVE."""
        now = self.clock.now()
        try:
            supplier = self._locked_supplier(supplier_id)
            before = _state_of(supplier)
            eligible, after = check_eligibility(before, now)
            if after != before:
                _store(supplier, after)
                log.info(f"Cooldown elapsed for {supplier.name}; back to active")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return eligible

    def eligible_suppliers(self) -> List[Supplier]:
        """Active suppliers whose source may be fetched in this batch."""
        now = self.clock.now()
        stmt = (
            select(Supplier)
            .where(Supplier.active.is_(True))
            .where(Supplier.scrape_status != ScrapeStatus.DISABLED.value)
            .order_by(Supplier.name)
            .with_for_update()
        )
        eligible: List[Supplier] = []
        try:
            for supplier in self.db.execute(stmt).scalars().all():
                before = _state_of(supplier)
                ok, after = check_eligibility(before, now)
                if after != before:
                    _store(supplier, after)
                    log.info(f"Cooldown elapsed for {supplier.name}; back to active")
                if ok:
                    eligible.append(supplier)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        log.info(f"{len(eligible)} suppliers eligible for scraping")
        return eligible

    # -------------------------------------------------------------------------
    # Admin overrides
    # -------------------------------------------------------------------------
    def reenable(self, supplier_id: Any) -> ScrapeHealthState:
        """Admin override: back to ACTIVE with a clean failure count."""
        try:
            supplier = self._locked_supplier(supplier_id)
            previous = supplier.scrape_status
            _store(supplier, ScrapeHealthState(last_failure_at=supplier.last_scrape_failure_at))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log.info(f"Supplier {supplier.name} re-enabled (was {previous})")
        return _state_of(supplier)

    def reenable_disabled(self) -> int:
        """Monthly retry: give every disabled supplier another chance."""
        stmt = (
            update(Supplier)
            .where(Supplier.scrape_status == ScrapeStatus.DISABLED.value)
            .values(
                scrape_status=ScrapeStatus.ACTIVE.value,
                consecutive_scrape_failures=0,
                scrape_cooldown_until=None,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            count = self.db.execute(stmt).rowcount or 0
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if count:
            log.info(f"Monthly reset: {count} disabled suppliers re-enabled")
        return count

    def backoff_stats(self) -> Dict[str, int]:
        """Counts per scrape status for active suppliers with a website."""
        stmt = (
            select(Supplier.scrape_status, func.count())
            .where(Supplier.active.is_(True))
            .where(Supplier.website.is_not(None))
            .where(Supplier.website != "")
            .group_by(Supplier.scrape_status)
        )
        stats = {status.value: 0 for status in ScrapeStatus}
        for status, count in self.db.execute(stmt).all():
            stats[status] = count

        failing = select(func.count()).select_from(Supplier).where(
            Supplier.active.is_(True),
            Supplier.website.is_not(None),
            Supplier.website != "",
            Supplier.consecutive_scrape_failures > 0,
        )
        stats["with_recent_failures"] = self.db.execute(failing).scalar() or 0
        return stats
