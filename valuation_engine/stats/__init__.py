"""Robust statistics engine."""

from .robust import (
    RobustStats,
    ValuationContext,
    compute,
    compute_robust_stats,
    percentile,
    result_from_stats,
)

__all__ = [
    "RobustStats",
    "ValuationContext",
    "compute",
    "compute_robust_stats",
    "percentile",
    "result_from_stats",
]
