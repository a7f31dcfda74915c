"""Two-namespace cache: raw per-page listings and computed valuations."""

from __future__ import annotations

import logging

from ..common.config import Config
from ..common.models import Listing, ValuationResult
from .backends import CacheBackend, MemoryCache, SQLiteCache

logger = logging.getLogger(__name__)

PAGE_NAMESPACE = "page"
RESULT_NAMESPACE = "result"


class ValuationCache:
    """Page and result caches sharing one backend.

    Backend failures are logged and treated as misses (reads) or dropped
    (writes); a cache problem never fails a valuation.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        page_ttl_seconds: int = 24 * 3600,
        result_ttl_seconds: int = 24 * 3600,
    ) -> None:
        self.backend = backend if backend is not None else MemoryCache()
        self.page_ttl_seconds = page_ttl_seconds
        self.result_ttl_seconds = result_ttl_seconds

    @classmethod
    def from_config(cls, config: Config) -> ValuationCache:
        if config.cache_backend == "sqlite":
            backend: CacheBackend = SQLiteCache(config)
        else:
            backend = MemoryCache(config.cache_max_entries)
        return cls(
            backend,
            page_ttl_seconds=config.cache_ttl_seconds,
            result_ttl_seconds=config.cache_ttl_seconds,
        )

    def _get(self, namespace: str, key: str):
        try:
            return self.backend.get(f"{namespace}:{key}")
        except Exception:
            logger.warning("Cache read failed for %s:%s", namespace, key, exc_info=True)
            return None

    def _set(self, namespace: str, key: str, value, ttl_seconds: int) -> None:
        try:
            self.backend.set(f"{namespace}:{key}", value, ttl_seconds)
        except Exception:
            logger.warning("Cache write failed for %s:%s", namespace, key, exc_info=True)

    # --- Page cache ---

    def get_page(self, key: str) -> list[Listing] | None:
        data = self._get(PAGE_NAMESPACE, key)
        if data is None:
            return None
        return [Listing.from_dict(item) for item in data]

    def set_page(self, key: str, listings: list[Listing]) -> None:
        self._set(
            PAGE_NAMESPACE,
            key,
            [listing.to_dict() for listing in listings],
            self.page_ttl_seconds,
        )

    # --- Result cache ---

    def get_result(self, key: str) -> ValuationResult | None:
        data = self._get(RESULT_NAMESPACE, key)
        if data is None:
            return None
        return ValuationResult.from_dict(data)

    def set_result(self, key: str, result: ValuationResult) -> None:
        self._set(RESULT_NAMESPACE, key, result.to_dict(), self.result_ttl_seconds)
