"""Trend, quality score and price statistics tests"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from price_intel.services.price_stats import (
    median,
    round_price,
    trend_from_history,
    week_as_of,
    week_end,
    week_start,
)
from price_intel.services.scoring import (
    COUNTY_WEIGHTS,
    ZIP_WEIGHTS,
    percent_change,
    quality_score,
    recency_score,
)


class TestMedianAndRounding:
    """Test median and price rounding"""

    def test_odd_count_median(self):
        """Test median of an odd number of prices is the middle one"""
        assert median([Decimal("2.90"), Decimal("2.50"), Decimal("2.70")]) == Decimal("2.70")

    def test_even_count_median_is_mean_of_middle_two(self):
        """Test median of four prices interpolates the middle pair"""
        prices = [Decimal("2.50"), Decimal("2.70"), Decimal("2.90"), Decimal("3.10")]
        assert median(prices) == Decimal("2.80")

    def test_empty_median_raises(self):
        """Test median of nothing is an error, not zero"""
        with pytest.raises(ValueError):
            median([])

    def test_round_half_up(self):
        """Test prices round half-up to three decimals"""
        assert round_price(Decimal("2.4995")) == Decimal("2.500")
        assert round_price(Decimal("3.1234")) == Decimal("3.123")
        assert round_price(Decimal("3.1235")) == Decimal("3.124")


class TestWeeks:
    """Test Monday-based UTC weeks"""

    def test_week_start_is_monday(self):
        """Test a Wednesday maps to the preceding Monday"""
        assert week_start(datetime(2026, 10, 14, 10, 0, tzinfo=timezone.utc)) == date(2026, 10, 12)

    def test_week_start_uses_utc(self):
        """Test late Sunday in New York is already Monday in UTC"""
        eastern = timezone(timedelta(hours=-4))
        assert week_start(datetime(2026, 10, 11, 22, 0, tzinfo=eastern)) == date(2026, 10, 12)

    def test_week_end_and_as_of(self):
        """Test week end is the next Monday and as-of is just before it"""
        end = week_end(date(2026, 10, 5))
        assert end == datetime(2026, 10, 12, tzinfo=timezone.utc)
        assert week_as_of(date(2026, 10, 5)) < end
        assert week_start(week_as_of(date(2026, 10, 5))) == date(2026, 10, 5)


class TestPercentChange:
    """Test percent change calculation"""

    def test_increase(self):
        """Test a rise from 3.00 to 3.30 is +10%"""
        assert percent_change(Decimal("3.30"), Decimal("3.00")) == Decimal("10.00")

    def test_decrease_rounded(self):
        """Test a fall is negative and rounded to 2 decimals"""
        assert percent_change(Decimal("2.90"), Decimal("3.10")) == Decimal("-6.45")

    @pytest.mark.parametrize("past", [None, Decimal("0")])
    def test_missing_baseline(self, past):
        """Test no baseline means no trend"""
        assert percent_change(Decimal("3.00"), past) is None


class TestTrendFromHistory:
    """Test trailing-window trend summary"""

    CURRENT = date(2026, 10, 12)

    def _weeks_ago(self, n):
        return self.CURRENT - timedelta(weeks=n)

    def test_exact_six_week_comparison(self):
        """Test trend compares against the row exactly six weeks earlier"""
        history = {
            self._weeks_ago(0): Decimal("3.300"),
            self._weeks_ago(3): Decimal("3.150"),
            self._weeks_ago(6): Decimal("3.000"),
            self._weeks_ago(8): Decimal("2.900"),
        }
        trend = trend_from_history(history, self.CURRENT, 12, 6)
        assert trend.weeks_available == 4
        assert trend.percent_change_6w == Decimal("10.00")
        assert trend.first_week_price == Decimal("2.900")
        assert trend.latest_week_price == Decimal("3.300")

    def test_missing_six_week_row_means_no_trend(self):
        """Test a gap at exactly six weeks yields None rather than a nearby week"""
        history = {
            self._weeks_ago(0): Decimal("3.300"),
            self._weeks_ago(5): Decimal("3.000"),
            self._weeks_ago(7): Decimal("2.950"),
        }
        trend = trend_from_history(history, self.CURRENT, 12, 6)
        assert trend.percent_change_6w is None
        assert trend.weeks_available == 3

    def test_rows_outside_window_ignored(self):
        """Test weeks older than the 12-week window do not count"""
        history = {
            self._weeks_ago(0): Decimal("3.300"),
            self._weeks_ago(12): Decimal("2.000"),
        }
        trend = trend_from_history(history, self.CURRENT, 12, 6)
        assert trend.weeks_available == 1
        assert trend.first_week_price == Decimal("3.300")


class TestQualityScore:
    """Test data quality score"""

    def test_full_coverage_scores_one(self):
        """Test saturated components and fresh tight prices give 1.0"""
        score = quality_score(30, 12, 500, 0.05, hours_since_update=1)
        assert score == Decimal("1.00")

    def test_components_are_capped(self):
        """Test exceeding targets does not push above 1"""
        assert quality_score(300, 52, 5000, 0.0, hours_since_update=0) == Decimal("1.00")

    def test_empty_partition_scores_recency_floor(self):
        """Test zero data still gets the stale recency floor only"""
        assert quality_score(0, 0, 0, 0.0) == Decimal("0.01")

    @pytest.mark.parametrize(
        "hours,expected",
        [(None, 0.1), (0, 1.0), (24, 1.0), (30, 0.7), (60, 0.4), (100, 0.1)],
    )
    def test_recency_steps(self, hours, expected):
        """Test recency buckets at 24/48/72 hours"""
        assert recency_score(hours) == expected

    @pytest.mark.parametrize("weights", [ZIP_WEIGHTS, COUNTY_WEIGHTS])
    @pytest.mark.parametrize("weeks", [0, 3, 6, 12])
    @pytest.mark.parametrize("dispersion", [0.0, 0.2, 0.8])
    def test_monotone_in_supplier_count(self, weights, weeks, dispersion):
        """Test more suppliers never lowers the score"""
        scores = [
            quality_score(n, weeks, 50, dispersion, hours_since_update=10, weights=weights)
            for n in range(0, 40)
        ]
        assert scores == sorted(scores)

    @pytest.mark.parametrize("weights", [ZIP_WEIGHTS, COUNTY_WEIGHTS])
    @pytest.mark.parametrize("suppliers", [1, 5, 20])
    def test_monotone_in_weeks(self, weights, suppliers):
        """Test more weeks of history never lowers the score"""
        scores = [
            quality_score(suppliers, weeks, 100, 0.1, hours_since_update=10, weights=weights)
            for weeks in range(0, 16)
        ]
        assert scores == sorted(scores)

    @pytest.mark.parametrize("weights", [ZIP_WEIGHTS, COUNTY_WEIGHTS])
    @pytest.mark.parametrize("suppliers", [1, 8, 30])
    def test_non_increasing_in_dispersion(self, weights, suppliers):
        """Test wider price spread never raises the score"""
        scores = [
            quality_score(suppliers, 6, 100, d / 20, hours_since_update=10, weights=weights)
            for d in range(0, 40)
        ]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.parametrize("suppliers", [0, 1, 50])
    @pytest.mark.parametrize("points", [0, 10, 10_000])
    @pytest.mark.parametrize("weeks", [0, 12, 100])
    @pytest.mark.parametrize("dispersion", [0.0, 1.0, 25.0])
    @pytest.mark.parametrize("hours", [None, 0, 500])
    def test_bounded(self, suppliers, points, weeks, dispersion, hours):
        """Test the score stays within [0, 1]"""
        score = quality_score(suppliers, weeks, points, dispersion, hours_since_update=hours)
        assert Decimal("0") <= score <= Decimal("1")

    def test_dispersion_penalty(self):
        """Test a wide spread scores below an otherwise identical tight one"""
        tight = quality_score(10, 6, 100, 0.05, hours_since_update=5)
        wide = quality_score(10, 6, 100, 0.60, hours_since_update=5)
        assert wide < tight
