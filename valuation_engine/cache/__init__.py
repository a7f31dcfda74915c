"""Cache layer: deterministic fingerprints and TTL key-value stores."""

from .backends import CacheBackend, MemoryCache, SQLiteCache
from .fingerprint import (
    fingerprint,
    page_fingerprint,
    query_fingerprint,
    result_fingerprint,
)
from .valuation_cache import ValuationCache

__all__ = [
    "CacheBackend",
    "MemoryCache",
    "SQLiteCache",
    "ValuationCache",
    "fingerprint",
    "page_fingerprint",
    "query_fingerprint",
    "result_fingerprint",
]
