"""Pure price statistics shared by the ZIP and county aggregators."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from price_intel.services.scoring import percent_change

PRICE_QUANTUM = Decimal("0.001")


def round_price(value: Decimal | float | int) -> Decimal:
    """Quantize to three decimals, half-up (2.4995 -> 2.500)."""
    return Decimal(str(value)).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def median(values: Sequence[Decimal]) -> Decimal:
    """Median with the mean of the middle two for an even count."""
    if not values:
        raise ValueError("median() of an empty sequence")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


@dataclass(frozen=True)
class ObservationPoint:
    """The slice of a price observation the aggregators need."""

    supplier_id: uuid.UUID
    price: Decimal
    observed_at: datetime


@dataclass(frozen=True)
class PartitionStats:
    median_price: Decimal
    min_price: Decimal
    max_price: Decimal
    avg_price: Decimal
    supplier_count: int
    data_points: int
    last_observed_at: datetime

    @property
    def dispersion(self) -> float:
        """Relative spread (max - min) / median."""
        if not self.median_price:
            return 0.0
        return float((self.max_price - self.min_price) / self.median_price)


def summarize(points: Iterable[ObservationPoint]) -> Optional[PartitionStats]:
    """Reduce a partition's observations to rounded summary stats, or None if empty."""
    points = list(points)
    if not points:
        return None

    prices = [p.price for p in points]
    return PartitionStats(
        median_price=round_price(median(prices)),
        min_price=round_price(min(prices)),
        max_price=round_price(max(prices)),
        avg_price=round_price(sum(prices) / len(prices)),
        supplier_count=len({p.supplier_id for p in points}),
        data_points=len(points),
        last_observed_at=max(p.observed_at for p in points),
    )


# -----------------------------------------------------------------------------
# Weeks
# -----------------------------------------------------------------------------
def week_start(instant: datetime) -> date:
    """Monday (UTC) of the week containing ``instant``."""
    if instant.tzinfo is not None:
        instant = instant.astimezone(timezone.utc)
    day = instant.date()
    return day - timedelta(days=day.weekday())


def week_end(start: date) -> datetime:
    """Exclusive end of the week: the following Monday 00:00 UTC."""
    return datetime.combine(start + timedelta(days=7), time.min, tzinfo=timezone.utc)


def week_as_of(start: date) -> datetime:
    """Last instant that still belongs to the week, used for as-of validity."""
    return week_end(start) - timedelta(microseconds=1)


@dataclass(frozen=True)
class TrendSnapshot:
    weeks_available: int
    percent_change_6w: Optional[Decimal]
    first_week_price: Optional[Decimal]
    latest_week_price: Optional[Decimal]


def trend_from_history(
    history: Dict[date, Decimal],
    current_week: date,
    history_weeks: int,
    trend_weeks: int,
) -> TrendSnapshot:
    """Summarize weekly medians inside the trailing window ending at ``current_week``.

    The trend compares the current week with the row exactly ``trend_weeks``
    earlier; if that week is missing there is no trend.
    """
    window_start = current_week - timedelta(weeks=history_weeks - 1)
    in_window: List[date] = sorted(
        week for week in history if window_start <= week <= current_week
    )
    if not in_window:
        return TrendSnapshot(0, None, None, None)

    latest = history.get(current_week)
    past = history.get(current_week - timedelta(weeks=trend_weeks))
    change = percent_change(latest, past) if latest is not None else None

    return TrendSnapshot(
        weeks_available=len(in_window),
        percent_change_6w=change,
        first_week_price=history[in_window[0]],
        latest_week_price=latest,
    )
