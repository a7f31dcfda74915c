"""CLI entry point for draining the deferred work queue.

Meant to be run periodically (e.g. from cron every 5 minutes).

Usage:
    python -m valuation_engine.work_queue.main
    python -m valuation_engine.work_queue.main --max-items 10 --retry-failed
    python -m valuation_engine.work_queue.main --stale-minutes 15 --retry-failed
    python -m valuation_engine.work_queue.main --status
    python -m valuation_engine.work_queue.main --purge
"""

from __future__ import annotations

import argparse
import json
import logging

from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.logging import setup_logging
from ..database.connection import init_db
from ..database.repository import ValuationRepository
from ..datasources.aggregator import Aggregator
from .consumer import QueueConsumer
from .queue import WorkQueue

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deferred work queue consumer")
    parser.add_argument(
        "--max-items",
        type=int,
        default=None,
        help="Max requests to process in this run (default: QUEUE_BATCH_SIZE)",
    )
    parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Re-queue failed requests that still have attempts left before draining",
    )
    parser.add_argument(
        "--purge",
        action="store_true",
        help="Delete completed and failed requests after draining",
    )
    parser.add_argument(
        "--stale-minutes",
        type=int,
        default=None,
        help="Fail requests stuck in processing this long (default: QUEUE_STALE_MINUTES)",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Only print queue counts by status",
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Output JSON file path for the drain report",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    setup_logging()
    config = Config()
    init_db(config)

    queue = WorkQueue(config)

    if args.status:
        for status, count in queue.counts().items():
            logger.info("  %-10s %d", status, count)
        return

    queue.requeue_stale(args.stale_minutes)

    if args.retry_failed:
        queue.retry_failed()

    cache = ValuationCache.from_config(config)
    with Aggregator.with_default_sources(config, cache) as aggregator:
        consumer = QueueConsumer(queue, aggregator, ValuationRepository(config), config)
        report = consumer.drain_queue(args.max_items)

    if args.purge:
        queue.purge_finished()

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info("Report written to %s", args.output)


if __name__ == "__main__":
    main()
