"""Tests for the robust statistics engine."""

from __future__ import annotations

import pytest

from valuation_engine.common.config import ValuationConfig
from valuation_engine.common.models import Confidence, SellerType, VehicleCondition
from valuation_engine.stats.robust import (
    ValuationContext,
    compute,
    compute_robust_stats,
    percentile,
)

NORMAL = ValuationContext(year=2019, km=60000, condition=VehicleCondition.NORMAL)


class TestPercentile:
    def test_linear_interpolation(self):
        values = [10, 20, 30, 40]
        assert percentile(values, 0) == 10
        assert percentile(values, 100) == 40
        assert percentile(values, 50) == 25
        assert percentile(values, 25) == pytest.approx(17.5)

    def test_unsorted_input(self):
        assert percentile([30, 10, 20], 50) == 20

    def test_single_value(self):
        assert percentile([7000], 90) == 7000

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            percentile([], 50)


class TestComputeRobustStats:
    def test_outlier_excluded(self, make_listings, valuation_config):
        prices = [5000, 6000, 7000, 8000, 9000, 10000, 50000]
        stats = compute_robust_stats(make_listings(prices), valuation_config)
        # P10 = 5600, P90 = 26000 on the raw set
        assert stats.n_raw == 7
        assert stats.n_clean == 5
        assert stats.max_clean == 10000
        assert stats.min_clean == 6000
        assert stats.p50 == 8000
        assert stats.p25 == 7000
        assert stats.p75 == 9000
        assert stats.iqr_ratio == 0.25

    def test_out_of_band_prices_ignored(self, make_listings, valuation_config):
        stats = compute_robust_stats(make_listings([100, 9000, 9100, 9200, 9300, 9400, 900000]), valuation_config)
        assert stats.n_raw == 5

    def test_too_few_clean_samples(self, make_listings, valuation_config):
        assert compute_robust_stats(make_listings([9000, 9500]), valuation_config) is None
        assert compute_robust_stats([], valuation_config) is None

    def test_seller_counts(self, make_listings, valuation_config):
        listings = make_listings([9000, 9100, 9200], seller_type=SellerType.PRIVATE)
        listings += make_listings([9300, 9400], source="dealer", seller_type=SellerType.DEALER)
        stats = compute_robust_stats(listings, valuation_config)
        assert stats.n_private + stats.n_dealers == stats.n_clean


class TestCompute:
    def test_quartiles_ordered(self, make_listings, valuation_config):
        prices = [7000 + 137 * (i % 17) + 11 * i for i in range(60)]
        result = compute(make_listings(prices), NORMAL, valuation_config)
        assert result.p25 <= result.p50 <= result.p75
        assert result.samples <= result.samples_raw

    def test_confidence_high(self, make_listings, valuation_config):
        prices = [10000 + 10 * i for i in range(51)]
        result = compute(make_listings(prices), NORMAL, valuation_config)
        assert result.samples >= 40
        assert result.iqr_ratio <= 0.20
        assert result.confidence == Confidence.HIGH

    def test_confidence_medium_when_dispersed(self, make_listings, valuation_config):
        prices = [7000 + 100 * i for i in range(51)]
        result = compute(make_listings(prices), NORMAL, valuation_config)
        assert result.samples == 41
        assert result.iqr_ratio > 0.20
        assert result.confidence == Confidence.MEDIUM

    def test_confidence_low_with_few_samples(self, make_listings, valuation_config):
        result = compute(make_listings([9000, 9100, 9200, 9300, 9400]), NORMAL, valuation_config)
        assert result.confidence == Confidence.LOW

    def test_condition_and_dealer_offer(self, make_listings, valuation_config):
        listings = make_listings([10000] * 5)
        excellent = compute(listings, ValuationContext(2019, 60000, VehicleCondition.EXCELLENT), valuation_config)
        poor = compute(listings, ValuationContext(2019, 60000, VehicleCondition.POOR), valuation_config)
        normal = compute(listings, NORMAL, valuation_config)

        assert excellent.p50 == 10000
        assert excellent.adjusted_median == 10500
        assert excellent.dealer_buy_price == 9030
        assert poor.adjusted_median == 9300
        assert normal.adjusted_median == 10000
        assert normal.dealer_buy_price == 8600
        assert normal.dealer_gap == 1400

    def test_identical_prices(self, make_listings, valuation_config):
        result = compute(make_listings([12000] * 4), NORMAL, valuation_config)
        assert result.p25 == result.p50 == result.p75 == 12000
        assert result.iqr_ratio == 0.0
        assert result.samples == 4

    def test_three_identical_prices_at_minimum_sample(self, make_listings, valuation_config):
        result = compute(make_listings([10000, 10000, 10000]), NORMAL, valuation_config)
        assert result is not None
        assert result.p25 == result.p50 == result.p75 == 10000
        assert result.samples == result.samples_raw == 3
        assert result.iqr_ratio == 0.0
        assert result.confidence == Confidence.LOW
        assert result.adjusted_median == 10000
        assert result.dealer_buy_price == 8600

    def test_insufficient_returns_none(self, make_listings, valuation_config):
        assert compute(make_listings([9000, 9500]), NORMAL, valuation_config) is None

    def test_custom_thresholds(self, make_listings):
        config = ValuationConfig(min_samples=10)
        assert compute(make_listings([9000 + i for i in range(5)]), NORMAL, config) is None

    def test_currency_values_are_integers(self, make_listings, valuation_config):
        result = compute(make_listings([9001, 9002, 9004, 9007, 9011]), NORMAL, valuation_config)
        for value in (result.p25, result.p50, result.p75, result.adjusted_median, result.dealer_buy_price):
            assert isinstance(value, int)
