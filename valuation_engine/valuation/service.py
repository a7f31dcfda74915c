"""Valuation orchestration: cache, window widening, statistics, persistence.

Flow for one request:
1. Return the cached result for the same input, if any.
2. Aggregate listings in the standard window (±1 year, ±15% km).
3. With fewer than 5 listings, try the extended window (±2 years, ±30% km)
   and keep it only if it finds strictly more listings.
4. In FAST mode, queue the slow sources once for the adopted window.
5. Prefer statistics the queue consumer stored for that window when they
   cover more listings than the fresh fetch.
6. With no listings at all, query the primary source without year/km
   limits to tell an unknown model apart from an over-narrow query.
7. Compute robust statistics, cache and optionally persist the result.
"""

from __future__ import annotations

import logging

from ..cache.fingerprint import query_fingerprint, result_fingerprint
from ..cache.valuation_cache import ValuationCache
from ..common.config import Config, ValuationConfig
from ..common.models import (
    AggregationMode,
    Listing,
    SearchParams,
    ValuationInput,
    ValuationResult,
)
from ..database.repository import ValuationRepository
from ..datasources.aggregator import Aggregator
from ..stats.robust import RobustStats, ValuationContext, compute, result_from_stats
from .errors import (
    InsufficientInventoryError,
    InsufficientSampleError,
    ModelNotFoundError,
)

logger = logging.getLogger(__name__)


class ValuationService:
    """Produces a ValuationResult for a ValuationInput.

    Usage:
        service = ValuationService(aggregator, cache, repository, config)
        result = service.valuate(input)
    """

    def __init__(
        self,
        aggregator: Aggregator,
        cache: ValuationCache | None = None,
        repository: ValuationRepository | None = None,
        config: Config | None = None,
        valuation_config: ValuationConfig | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.cache = cache or ValuationCache()
        self.repository = repository
        self.config = config or Config()
        self.valuation_config = valuation_config or ValuationConfig.load()

    def standard_window(self, input: ValuationInput) -> SearchParams:
        vc = self.valuation_config
        return SearchParams.for_input(
            input, vc.year_window, vc.km_window_percent, self.config.max_pages
        )

    def extended_window(self, input: ValuationInput) -> SearchParams:
        vc = self.valuation_config
        return SearchParams.for_input(
            input, vc.extended_year_window, vc.extended_km_window_percent, self.config.max_pages
        )

    def valuate(
        self,
        input: ValuationInput,
        estimate_id: str | None = None,
        mode: AggregationMode = AggregationMode.FAST,
    ) -> ValuationResult:
        """Value ``input``.

        Raises:
            ModelNotFoundError: No listings exist for the model.
            InsufficientInventoryError: Listings exist, but none match year/km.
            InsufficientSampleError: Too few listings survive outlier trimming.
        """
        cache_key = result_fingerprint(input)
        cached = self.cache.get_result(cache_key)
        if cached is not None:
            logger.info("Result cache hit for %s %s %d", input.brand, input.model, input.year)
            cached.cached = True
            return cached

        params = self.standard_window(input)
        logger.info(
            "Standard search: years %d-%d, km %d-%d",
            params.year_min, params.year_max, params.km_min, params.km_max,
        )
        listings = self.aggregator.aggregate(input, params, mode, defer=False).listings
        extended = False

        if len(listings) < self.valuation_config.min_listings_before_widening:
            wide_params = self.extended_window(input)
            logger.info(
                "Only %d listings, widening: years %d-%d, km %d-%d",
                len(listings),
                wide_params.year_min, wide_params.year_max,
                wide_params.km_min, wide_params.km_max,
            )
            wide_listings = self.aggregator.aggregate(input, wide_params, mode, defer=False).listings
            if len(wide_listings) > len(listings):
                listings = wide_listings
                params = wide_params
                extended = True

        # Slow sources are queued once, for the adopted window only
        if mode == AggregationMode.FAST:
            self.aggregator.defer_secondaries(input, params, len(listings))

        stored = self._stored_stats(input, params)
        if not listings and stored is None:
            self._raise_for_empty(input)

        context = ValuationContext(year=input.year, km=input.km, condition=input.condition)
        result = compute(listings, context, self.valuation_config) if listings else None
        if stored is not None and (result is None or stored.n_clean > result.samples):
            logger.info(
                "Using stored enriched stats (%d listings) over %d fresh samples",
                stored.n_clean, result.samples if result else 0,
            )
            result = result_from_stats(stored, context, self.valuation_config)
            result.enriched = True
        if result is None:
            raise InsufficientSampleError(
                "Not enough comparable listings for a reliable estimate.",
                "Try a wider mileage range or a more common configuration.",
            )
        result.extended_window = extended

        self.cache.set_result(cache_key, result)
        if estimate_id and self.repository is not None:
            self._save_estimate(estimate_id, input, query_fingerprint(input, params), result)

        return result

    def _stored_stats(self, input: ValuationInput, params: SearchParams) -> RobustStats | None:
        """Statistics the queue consumer stored for this window, if still fresh."""
        if self.repository is None:
            return None
        try:
            row = self.repository.get_stats(query_fingerprint(input, params))
        except Exception:
            logger.warning("Failed to read stored stats", exc_info=True)
            return None
        return RobustStats.from_row(row) if row else None

    def _raise_for_empty(self, input: ValuationInput) -> None:
        # Existence check against the primary source only, nothing queued
        unrestricted = SearchParams.unrestricted(self.config.max_pages)
        available: list[Listing] = self.aggregator.aggregate(
            input, unrestricted, AggregationMode.FAST, defer=False
        ).listings

        if not available:
            raise ModelNotFoundError(
                f"No {input.brand} {input.model} found in Italy.",
                "This model may not be available on the Italian market.",
            )

        raise InsufficientInventoryError(
            "No listing matches the given year and mileage.",
            f"There are {len(available)} listings of {input.brand} {input.model} "
            "with a different year or mileage. Try changing the parameters.",
            available=len(available),
        )

    def _save_estimate(
        self,
        estimate_id: str,
        input: ValuationInput,
        query_hash: str,
        result: ValuationResult,
    ) -> None:
        try:
            self.repository.save_estimate(estimate_id, input, query_hash, result)
        except Exception:
            logger.warning("Failed to save estimate %s", estimate_id, exc_info=True)
