"""Robust price statistics over a set of listings.

Percentiles use linear interpolation between order statistics
(rank = p/100 * (n - 1)). Outliers are trimmed against the raw P10/P90
before the reported quartiles are recomputed on the clean set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from ..common.config import ValuationConfig
from ..common.models import (
    Confidence,
    Listing,
    SellerType,
    ValuationResult,
    VehicleCondition,
    is_price_in_band,
)

logger = logging.getLogger(__name__)


def percentile(values: list[int] | list[float], p: float) -> float:
    """p-th percentile (0-100) of ``values`` by linear interpolation.

    Raises ValueError on an empty sequence.
    """
    if not values:
        raise ValueError("percentile of empty sequence")

    ordered = sorted(values)
    rank = (p / 100) * (len(ordered) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


@dataclass(frozen=True)
class ValuationContext:
    """The vehicle being valued, as far as the statistics care."""

    year: int
    km: int
    condition: VehicleCondition = VehicleCondition.NORMAL


@dataclass
class RobustStats:
    """Condition-free market statistics of a listing set."""

    n_raw: int
    n_clean: int
    p25: int
    p50: int
    p75: int
    min_clean: int
    max_clean: int
    iqr_ratio: float
    n_dealers: int
    n_private: int

    def to_dict(self) -> dict:
        return {
            "n_raw": self.n_raw,
            "n_clean": self.n_clean,
            "p25": self.p25,
            "p50": self.p50,
            "p75": self.p75,
            "min_clean": self.min_clean,
            "max_clean": self.max_clean,
            "iqr_ratio": self.iqr_ratio,
            "n_dealers": self.n_dealers,
            "n_private": self.n_private,
        }

    @classmethod
    def from_row(cls, row: dict) -> RobustStats:
        """Rebuild from a ``query_stats`` row, which stores only the clean count."""
        return cls(
            n_raw=int(row["n_listings"]),
            n_clean=int(row["n_listings"]),
            p25=int(row["p25"]),
            p50=int(row["p50"]),
            p75=int(row["p75"]),
            min_clean=int(row["min_clean"]),
            max_clean=int(row["max_clean"]),
            iqr_ratio=float(row["iqr_ratio"]),
            n_dealers=int(row["n_dealers"]),
            n_private=int(row["n_private"]),
        )


def compute_robust_stats(
    listings: list[Listing],
    config: ValuationConfig | None = None,
) -> RobustStats | None:
    """Trim outliers and summarise prices; None when too few listings survive."""
    config = config or ValuationConfig()

    valid = [listing for listing in listings if is_price_in_band(listing.price)]
    if not valid:
        return None

    raw_prices = [listing.price for listing in valid]
    low = percentile(raw_prices, config.outlier_low_percentile)
    high = percentile(raw_prices, config.outlier_high_percentile)

    clean = [listing for listing in valid if low <= listing.price <= high]
    if len(clean) < config.min_samples:
        logger.info(
            "Only %d listings after trimming (need %d)", len(clean), config.min_samples
        )
        return None

    prices = [listing.price for listing in clean]
    p25 = percentile(prices, 25)
    p50 = percentile(prices, 50)
    p75 = percentile(prices, 75)
    iqr_ratio = (p75 - p25) / p50 if p50 > 0 else 0.0

    n_private = sum(1 for listing in clean if listing.seller_type == SellerType.PRIVATE)

    return RobustStats(
        n_raw=len(valid),
        n_clean=len(clean),
        p25=round(p25),
        p50=round(p50),
        p75=round(p75),
        min_clean=min(prices),
        max_clean=max(prices),
        iqr_ratio=round(iqr_ratio, 4),
        n_dealers=len(clean) - n_private,
        n_private=n_private,
    )


def confidence_for(n_clean: int, iqr_ratio: float, config: ValuationConfig) -> Confidence:
    thresholds = config.confidence_thresholds
    if n_clean >= thresholds.high_samples and iqr_ratio <= thresholds.high_max_iqr_ratio:
        return Confidence.HIGH
    if n_clean >= thresholds.medium_samples:
        return Confidence.MEDIUM
    return Confidence.LOW


def compute(
    listings: list[Listing],
    context: ValuationContext,
    config: ValuationConfig | None = None,
) -> ValuationResult | None:
    """Full valuation: robust stats, confidence, condition and dealer offer.

    Returns None when fewer than ``config.min_samples`` listings remain
    after outlier trimming.
    """
    config = config or ValuationConfig()
    stats = compute_robust_stats(listings, config)
    if stats is None:
        return None
    return result_from_stats(stats, context, config)


def result_from_stats(
    stats: RobustStats,
    context: ValuationContext,
    config: ValuationConfig | None = None,
) -> ValuationResult:
    """Apply confidence, condition adjustment and dealer offer to ``stats``."""
    config = config or ValuationConfig()
    condition = VehicleCondition(context.condition)
    adjustment = config.condition_adjustments.get(condition.value, 0.0)
    adjusted = stats.p50 * (1 + adjustment)
    dealer = adjusted * (1 - config.dealer_discount_percent)

    result = ValuationResult(
        p25=stats.p25,
        p50=stats.p50,
        p75=stats.p75,
        samples_raw=stats.n_raw,
        samples=stats.n_clean,
        confidence=confidence_for(stats.n_clean, stats.iqr_ratio, config),
        iqr_ratio=stats.iqr_ratio,
        adjusted_median=round(adjusted),
        dealer_buy_price=round(dealer),
        min_clean=stats.min_clean,
        max_clean=stats.max_clean,
        n_dealers=stats.n_dealers,
        n_private=stats.n_private,
    )

    logger.info(
        "Valuation: p50=%d adjusted=%d dealer=%d (%d/%d samples, %s confidence)",
        result.p50, result.adjusted_median, result.dealer_buy_price,
        result.samples, result.samples_raw, result.confidence.value,
    )
    return result
