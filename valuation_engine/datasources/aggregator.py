"""Combine listings from several sources with priority fallback.

The lowest-priority source is the primary and always runs. Secondary
sources are only consulted while the unique listing count stays below
``Config.min_results_threshold``: inline in THOROUGH mode, or deferred to
the work queue in FAST mode so user-facing calls never wait on a browser.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Iterable

from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.models import (
    AggregatedResult,
    AggregationMode,
    Listing,
    SearchParams,
    ValuationInput,
)
from ..common.rate_limiter import RateLimiterRegistry
from .autoscout24_source import AutoScout24Source
from .base_source import BaseSource
from .subito_source import SubitoSource

if TYPE_CHECKING:
    from ..work_queue.queue import WorkQueue

logger = logging.getLogger(__name__)


class Aggregator:
    """Runs registered sources in priority order and deduplicates by guid.

    Usage:
        with Aggregator([AutoScout24Source(config), SubitoSource(config)], queue) as agg:
            result = agg.aggregate(input, params)
    """

    def __init__(
        self,
        sources: Iterable[BaseSource] = (),
        queue: WorkQueue | None = None,
        config: Config | None = None,
    ) -> None:
        self.config = config or Config()
        self.queue = queue
        self._sources: list[BaseSource] = []
        for source in sources:
            self.register(source)

    @classmethod
    def with_default_sources(
        cls,
        config: Config | None = None,
        cache: ValuationCache | None = None,
        queue: WorkQueue | None = None,
    ) -> Aggregator:
        """AutoScout24 as primary, Subito as secondary, sharing one rate limiter registry."""
        config = config or Config()
        rate_limiters = RateLimiterRegistry(config)
        sources: list[BaseSource] = [AutoScout24Source(config, cache, rate_limiters)]
        if config.subito_enabled:
            sources.append(SubitoSource(config, cache, rate_limiters))
        return cls(sources, queue, config)

    # --- Registry ---

    def register(self, source: BaseSource) -> None:
        """Add or replace (by name) a source, keeping priority order."""
        self._sources = [s for s in self._sources if s.name != source.name]
        self._sources.append(source)
        self._sources.sort(key=lambda s: s.priority)
        logger.debug("Registered source %r", source)

    def get_source(self, name: str) -> BaseSource | None:
        for source in self._sources:
            if source.name == name:
                return source
        return None

    @property
    def sources(self) -> list[BaseSource]:
        return list(self._sources)

    # --- Aggregation ---

    def aggregate(
        self,
        input: ValuationInput,
        params: SearchParams,
        mode: AggregationMode = AggregationMode.FAST,
        defer: bool = True,
    ) -> AggregatedResult:
        """Collect listings for ``input`` in the ``params`` window.

        With ``defer=False`` a FAST call queries the primary only and leaves
        queueing to the caller (see ``defer_secondaries``). Source failures
        count as zero listings and never propagate.
        """
        start = time.monotonic()
        result = AggregatedResult()
        seen: set[str] = set()

        if not self._sources:
            logger.warning("No sources registered")
            return result

        primary, *secondaries = self._sources
        self._merge(result, seen, primary.name, self._run_source(primary, input, params))

        threshold = self.config.min_results_threshold
        for source in secondaries:
            if len(result.listings) >= threshold:
                break

            logger.info(
                "Only %d listings from primary (threshold %d), trying %s",
                len(result.listings), threshold, source.name,
            )

            if mode == AggregationMode.FAST:
                if defer and (queued_id := self._defer(source, input, params)):
                    result.queued.append(queued_id)
                continue

            if not self._is_available(source):
                logger.info("Source %s unavailable, skipping", source.name)
                continue

            listings = self._run_source(source, input, params)
            self._merge(result, seen, source.name, listings)
            result.enriched = True

        result.fetch_time_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Aggregated %d unique listings from %s in %d ms%s",
            len(result.listings),
            ", ".join(f"{name}={count}" for name, count in result.sources.items()),
            result.fetch_time_ms,
            " (enriched)" if result.enriched else "",
        )
        return result

    def aggregate_sync(self, input: ValuationInput, params: SearchParams) -> AggregatedResult:
        """Thorough aggregation: every needed secondary runs inline."""
        return self.aggregate(input, params, AggregationMode.THOROUGH)

    def _run_source(
        self,
        source: BaseSource,
        input: ValuationInput,
        params: SearchParams,
    ) -> list[Listing]:
        try:
            return source.fetch_listings(input, params)
        except Exception:
            logger.exception("Source %s failed", source.name)
            return []

    @staticmethod
    def _is_available(source: BaseSource) -> bool:
        try:
            return source.is_available()
        except Exception:
            logger.warning("Availability check for %s failed", source.name, exc_info=True)
            return False

    @staticmethod
    def _merge(
        result: AggregatedResult,
        seen: set[str],
        name: str,
        listings: list[Listing],
    ) -> None:
        result.sources[name] = len(listings)
        for listing in listings:
            if listing.guid in seen:
                continue
            seen.add(listing.guid)
            result.listings.append(listing)

    def defer_secondaries(
        self,
        input: ValuationInput,
        params: SearchParams,
        found: int,
    ) -> list[str]:
        """Queue every secondary source for ``params`` when ``found`` is below threshold.

        Returns the ids of the queued requests.
        """
        if found >= self.config.min_results_threshold:
            return []
        queued_ids = []
        for source in self._sources[1:]:
            if queued_id := self._defer(source, input, params):
                queued_ids.append(queued_id)
        return queued_ids

    def _defer(
        self,
        source: BaseSource,
        input: ValuationInput,
        params: SearchParams,
    ) -> str | None:
        if self.queue is None:
            logger.debug("No work queue attached, %s not deferred", source.name)
            return None
        queued = self.queue.enqueue(input, params, source.name)
        if queued is None:
            return None
        logger.info("Deferred %s search as %s", source.name, queued.id)
        return queued.id

    # --- Lifecycle ---

    def close(self) -> None:
        for source in self._sources:
            try:
                source.close()
            except Exception:
                logger.warning("Closing %s failed", source.name, exc_info=True)

    def __enter__(self) -> Aggregator:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
