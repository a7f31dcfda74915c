"""Background consumer that drains the work queue in bounded batches."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from ..cache.fingerprint import query_fingerprint
from ..common.config import Config, ValuationConfig
from ..common.models import QueuedRequest, QueueStatus
from ..database.repository import ValuationRepository
from ..datasources.aggregator import Aggregator
from ..stats.robust import compute_robust_stats
from .queue import WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    id: str
    status: QueueStatus
    listings: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "listings": self.listings,
            "error": self.error,
        }


@dataclass
class DrainReport:
    """Summary of one ``drain_queue`` run."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    remaining: int = 0
    results: list[DrainResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "failed": self.failed,
            "remaining": self.remaining,
            "results": [r.to_dict() for r in self.results],
        }


class QueueConsumer:
    """Runs queued requests through a thorough aggregation.

    Statistics of each successful run are stored via the repository under
    the query fingerprint; result-cache entries are left untouched. There
    is no retry scheduling here: failed entries stay failed until someone
    calls ``WorkQueue.retry_failed()``.

    Usage:
        consumer = QueueConsumer(queue, aggregator, repository, config)
        report = consumer.drain_queue(max_items=5)
    """

    STATS_SOURCE = "aggregated"

    def __init__(
        self,
        queue: WorkQueue,
        aggregator: Aggregator,
        repository: ValuationRepository | None = None,
        config: Config | None = None,
        valuation_config: ValuationConfig | None = None,
    ) -> None:
        self.queue = queue
        self.aggregator = aggregator
        self.repository = repository
        self.config = config or Config()
        self.valuation_config = valuation_config or ValuationConfig.load()

    def drain_queue(self, max_items: int | None = None) -> DrainReport:
        """Process up to ``max_items`` pending requests, oldest first."""
        limit = max_items if max_items is not None else self.config.queue_batch_size
        batch = self.queue.claim_batch(limit)
        report = DrainReport()

        if not batch:
            logger.info("No pending requests")
            return report

        logger.info("Processing %d queued requests", len(batch))

        for index, request in enumerate(batch):
            if index > 0 and self.config.queue_item_delay_seconds > 0:
                time.sleep(self.config.queue_item_delay_seconds)

            result = self._process(request)
            report.results.append(result)
            report.processed += 1
            if result.status == QueueStatus.COMPLETED:
                report.completed += 1
            else:
                report.failed += 1

        report.remaining = self.queue.counts()[QueueStatus.PENDING.value]
        logger.info(
            "Drain finished: %d processed, %d completed, %d failed, %d remaining",
            report.processed, report.completed, report.failed, report.remaining,
        )
        return report

    def _process(self, request: QueuedRequest) -> DrainResult:
        logger.info("Processing %s request %s", request.source, request.id)
        try:
            aggregated = self.aggregator.aggregate_sync(request.input, request.params)
            if aggregated.listings:
                self._store_stats(request, aggregated.listings)
            self.queue.mark_completed(request.id)
        except Exception as exc:
            logger.exception("Queued request %s failed", request.id)
            self.queue.mark_failed(request.id, str(exc) or type(exc).__name__)
            return DrainResult(request.id, QueueStatus.FAILED, error=str(exc))

        return DrainResult(request.id, QueueStatus.COMPLETED, listings=len(aggregated.listings))

    def _store_stats(self, request: QueuedRequest, listings: list) -> None:
        stats = compute_robust_stats(listings, self.valuation_config)
        if stats is None or self.repository is None:
            return

        filters = {
            "brand": request.input.brand,
            "model": request.input.model,
            **request.params.to_dict(),
            "fuel": request.input.fuel.value,
            "gearbox": request.input.gearbox.value,
        }
        self.repository.upsert_stats(
            query_fingerprint(request.input, request.params),
            filters,
            self.STATS_SOURCE,
            stats,
            ttl_hours=self.config.cache_ttl_hours,
        )
        logger.info("Stored aggregated stats for %s (%d clean)", request.id, stats.n_clean)
