"""SQLite database connection and schema management."""

from __future__ import annotations

import logging
import sqlite3

from ..common.config import Config

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS estimates (
    estimate_id TEXT PRIMARY KEY,
    query_hash TEXT NOT NULL,
    filters_json TEXT NOT NULL,
    n_total INTEGER NOT NULL,
    n_used INTEGER NOT NULL,
    confidence TEXT NOT NULL,
    cached INTEGER NOT NULL DEFAULT 0,
    p25 INTEGER NOT NULL,
    p50 INTEGER NOT NULL,
    p75 INTEGER NOT NULL,
    dealer_price INTEGER NOT NULL,
    dealer_gap INTEGER NOT NULL,
    iqr_ratio REAL NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_estimates_query_hash
    ON estimates(query_hash);

CREATE TABLE IF NOT EXISTS query_stats (
    query_hash TEXT PRIMARY KEY,
    filters_json TEXT NOT NULL,
    source TEXT NOT NULL,
    n_listings INTEGER NOT NULL,
    p25 INTEGER NOT NULL,
    p50 INTEGER NOT NULL,
    p75 INTEGER NOT NULL,
    min_clean INTEGER NOT NULL,
    max_clean INTEGER NOT NULL,
    iqr_ratio REAL NOT NULL,
    n_dealers INTEGER NOT NULL DEFAULT 0,
    n_private INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS queued_requests (
    id TEXT PRIMARY KEY,
    fingerprint TEXT NOT NULL,
    source TEXT NOT NULL,
    input_json TEXT NOT NULL,
    params_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_queue_status_created
    ON queued_requests(status, created_at);

CREATE INDEX IF NOT EXISTS idx_queue_fingerprint
    ON queued_requests(fingerprint);

CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""


def get_connection(config: Config | None = None) -> sqlite3.Connection:
    """Get a SQLite connection with row factory enabled.

    Args:
        config: Optional Config. Uses defaults if not provided.

    Returns:
        sqlite3.Connection with Row factory.
    """
    config = config or Config()
    db_path = config.database_abs_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db(config: Config | None = None) -> None:
    """Initialize database schema (idempotent).

    Args:
        config: Optional Config. Uses defaults if not provided.
    """
    config = config or Config()
    conn = get_connection(config)
    try:
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        logger.info("Database schema initialized at %s", config.database_abs_path)
    finally:
        conn.close()
