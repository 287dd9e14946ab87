"""Trend & data-quality scoring for regional price stats."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional


@dataclass(frozen=True)
class QualityWeights:
    """Targets at which a component saturates, and its weight in the total."""

    supplier_target: int
    data_points_target: int
    weeks_target: int
    supplier_weight: float
    data_points_weight: float
    weeks_weight: float
    recency_weight: float
    # Dispersion penalty: 1 / (1 + k * max(0, dispersion - tolerance))
    dispersion_k: float = 2.0
    dispersion_tolerance: float = 0.10


ZIP_WEIGHTS = QualityWeights(
    supplier_target=30,
    data_points_target=500,
    weeks_target=12,
    supplier_weight=0.40,
    data_points_weight=0.30,
    weeks_weight=0.20,
    recency_weight=0.10,
)

# County rollups see fewer distinct suppliers but more weeks of history
COUNTY_WEIGHTS = QualityWeights(
    supplier_target=12,
    data_points_target=300,
    weeks_target=10,
    supplier_weight=0.35,
    data_points_weight=0.25,
    weeks_weight=0.30,
    recency_weight=0.10,
)


def percent_change(current: Optional[Decimal], past: Optional[Decimal]) -> Optional[Decimal]:
    """Percent change from ``past`` to ``current``, 2 decimals; None without a baseline."""
    if current is None or not past:
        return None
    change = (Decimal(current) - Decimal(past)) / Decimal(past) * 100
    return change.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def recency_score(hours_since_update: Optional[float]) -> float:
    if hours_since_update is None or hours_since_update > 72:
        return 0.1
    if hours_since_update > 48:
        return 0.4
    if hours_since_update > 24:
        return 0.7
    return 1.0


def quality_score(
    supplier_count: int,
    weeks_available: int,
    data_points: int,
    price_dispersion: float,
    hours_since_update: Optional[float] = None,
    weights: QualityWeights = ZIP_WEIGHTS,
) -> Decimal:
    """Data quality in [0, 1], rounded to 2 decimals.

    Each component is capped at its target. The weighted sum is scaled down
    when the relative price spread exceeds the tolerance, so a region with
    a few wildly disagreeing suppliers scores lower than a tight one.
    """
    supplier_part = min(1.0, max(0, supplier_count) / weights.supplier_target)
    points_part = min(1.0, max(0, data_points) / weights.data_points_target)
    weeks_part = min(1.0, max(0, weeks_available) / weights.weeks_target)

    base = (
        supplier_part * weights.supplier_weight
        + points_part * weights.data_points_weight
        + weeks_part * weights.weeks_weight
        + recency_score(hours_since_update) * weights.recency_weight
    )

    excess = max(0.0, float(price_dispersion) - weights.dispersion_tolerance)
    score = base / (1.0 + weights.dispersion_k * excess)
    score = min(1.0, max(0.0, score))

    return Decimal(str(score)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
