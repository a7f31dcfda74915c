"""HTTP client with per-source rate limiting, proxy rotation and retries."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any

import requests
from fake_useragent import UserAgent

from .config import Config
from .rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "it-IT,it;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
}


class HTTPClient:
    """HTTP client wrapping requests with scraping best practices.

    Features:
    - Per-source rate limiting (shared registry)
    - Proxy rotation (round-robin)
    - Retries with exponential backoff on 5xx/429/network errors
    - Random User-Agent rotation
    """

    BACKOFF_BASE = 2.0

    def __init__(
        self,
        config: Config | None = None,
        source: str = "default",
        rate_limiters: RateLimiterRegistry | None = None,
    ) -> None:
        self.config = config or Config()
        self.source = source
        self._rate_limiters = rate_limiters or RateLimiterRegistry(self.config)
        self._session = requests.Session()
        self._ua = UserAgent(fallback="Mozilla/5.0")

        # Proxy rotation
        self._proxy_cycle = (
            itertools.cycle(self.config.proxy_list)
            if self.config.proxy_list
            else None
        )

    def _next_proxies(self) -> dict[str, str] | None:
        if not self._proxy_cycle:
            return None
        proxy = next(self._proxy_cycle)
        return {"http": proxy, "https": proxy}

    def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """Send a GET request with rate limiting and retries.

        Args:
            url: Target URL.
            params: Query parameters.
            headers: Extra headers (merged with defaults).
            timeout: Per-request timeout in seconds (defaults to config).

        Returns:
            requests.Response object with a 2xx status.

        Raises:
            requests.RequestException: After all retries exhausted, or
                immediately on a 4xx other than 429.
        """
        merged_headers = {"User-Agent": self._ua.random, **DEFAULT_HEADERS}
        if headers:
            merged_headers.update(headers)

        proxies = self._next_proxies()
        attempts = max(self.config.max_retries, 1)

        last_exc: Exception | None = None
        for attempt in range(attempts):
            self._rate_limiters.wait(self.source)
            try:
                resp = self._session.get(
                    url,
                    params=params,
                    headers=merged_headers,
                    proxies=proxies,
                    timeout=timeout or self.config.request_timeout,
                )
                resp.raise_for_status()
                return resp

            except requests.RequestException as exc:
                last_exc = exc

                # 4xx other than 429 is permanent
                if (
                    isinstance(exc, requests.HTTPError)
                    and exc.response is not None
                    and 400 <= exc.response.status_code < 500
                    and exc.response.status_code != 429
                ):
                    logger.warning("[%s] Request failed (4xx, no retry): %s", self.source, exc)
                    raise

                if attempt + 1 >= attempts:
                    break

                wait_time = self.BACKOFF_BASE ** attempt
                logger.warning(
                    "[%s] Request failed (attempt %d/%d): %s, retrying in %.1fs",
                    self.source,
                    attempt + 1,
                    attempts,
                    exc,
                    wait_time,
                )
                time.sleep(wait_time)

        raise last_exc  # type: ignore[misc]

    def head(self, url: str, timeout: float = 5) -> bool:
        """Return True if ``url`` answers a HEAD request with a 2xx/3xx status."""
        try:
            resp = self._session.head(
                url,
                headers={"User-Agent": self._ua.random},
                proxies=self._next_proxies(),
                timeout=timeout,
                allow_redirects=True,
            )
            return resp.ok
        except requests.RequestException as exc:
            logger.debug("[%s] HEAD %s failed: %s", self.source, url, exc)
            return False

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()

    def __enter__(self) -> HTTPClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
