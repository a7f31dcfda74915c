"""Persistence of computed estimates and aggregated query statistics."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from ..common.config import Config
from ..common.models import ValuationInput, ValuationResult
from .connection import get_connection

if TYPE_CHECKING:
    from ..stats.robust import RobustStats

logger = logging.getLogger(__name__)


class ValuationRepository:
    """Read/write access to the ``estimates`` and ``query_stats`` tables.

    Usage:
        repo = ValuationRepository(config)
        repo.save_estimate(estimate_id, input, query_hash, result)
        row = repo.get_estimate(estimate_id)
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    def save_estimate(
        self,
        estimate_id: str,
        input: ValuationInput,
        query_hash: str,
        result: ValuationResult,
    ) -> None:
        """Insert (or replace) a computed estimate."""
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO estimates
                    (estimate_id, query_hash, filters_json, n_total, n_used,
                     confidence, cached, p25, p50, p75, dealer_price,
                     dealer_gap, iqr_ratio)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    estimate_id,
                    query_hash,
                    json.dumps(input.to_dict(), ensure_ascii=False),
                    result.samples_raw,
                    result.samples,
                    result.confidence.value,
                    int(result.cached),
                    result.p25,
                    result.p50,
                    result.p75,
                    result.dealer_buy_price,
                    result.dealer_gap,
                    result.iqr_ratio,
                ),
            )
            conn.commit()
            logger.info("Saved estimate %s", estimate_id)
        finally:
            conn.close()

    def get_estimate(self, estimate_id: str) -> dict | None:
        """Return a saved estimate as a dict, or None if unknown."""
        conn = get_connection(self.config)
        try:
            row = conn.execute(
                "SELECT * FROM estimates WHERE estimate_id = ?",
                (estimate_id,),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        data = dict(row)
        data["filters"] = json.loads(data.pop("filters_json"))
        data["cached"] = bool(data["cached"])
        return data

    def upsert_stats(
        self,
        query_hash: str,
        filters: dict,
        source: str,
        stats: RobustStats,
        ttl_hours: int = 24,
    ) -> None:
        """Store aggregated statistics for a query fingerprint with a TTL."""
        now = time.time()
        conn = get_connection(self.config)
        try:
            conn.execute(
                """
                INSERT INTO query_stats
                    (query_hash, filters_json, source, n_listings, p25, p50,
                     p75, min_clean, max_clean, iqr_ratio, n_dealers,
                     n_private, updated_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(query_hash) DO UPDATE SET
                    filters_json = excluded.filters_json,
                    source = excluded.source,
                    n_listings = excluded.n_listings,
                    p25 = excluded.p25,
                    p50 = excluded.p50,
                    p75 = excluded.p75,
                    min_clean = excluded.min_clean,
                    max_clean = excluded.max_clean,
                    iqr_ratio = excluded.iqr_ratio,
                    n_dealers = excluded.n_dealers,
                    n_private = excluded.n_private,
                    updated_at = excluded.updated_at,
                    expires_at = excluded.expires_at
                """,
                (
                    query_hash,
                    json.dumps(filters, ensure_ascii=False),
                    source,
                    stats.n_clean,
                    stats.p25,
                    stats.p50,
                    stats.p75,
                    stats.min_clean,
                    stats.max_clean,
                    stats.iqr_ratio,
                    stats.n_dealers,
                    stats.n_private,
                    now,
                    now + ttl_hours * 3600,
                ),
            )
            conn.commit()
            logger.info("Upserted stats for %s (%d listings)", query_hash, stats.n_clean)
        finally:
            conn.close()

    def get_stats(self, query_hash: str) -> dict | None:
        """Return unexpired statistics for a fingerprint, or None."""
        conn = get_connection(self.config)
        try:
            row = conn.execute(
                "SELECT * FROM query_stats WHERE query_hash = ? AND expires_at > ?",
                (query_hash, time.time()),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        data = dict(row)
        data["filters"] = json.loads(data.pop("filters_json"))
        return data
