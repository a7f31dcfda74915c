"""Per-source rate limiting for polite scraping."""

from __future__ import annotations

import random
import threading
import time
from collections import deque

from .config import Config, RateLimitPolicy


class RateLimiter:
    """Thread-safe rate limiter for a single source.

    Enforces a minimum interval between consecutive requests (plus random
    jitter) and a cap on requests within any rolling 60-second window.
    Concurrent callers of the same source are serialised.

    Args:
        policy: Pacing rules for the source.
    """

    WINDOW_SECONDS = 60.0

    def __init__(self, policy: RateLimitPolicy | None = None) -> None:
        self.policy = policy or RateLimitPolicy()
        self._last_request_time: float = 0.0
        self._recent: deque[float] = deque()
        self._lock = threading.Lock()

    def _next_interval(self) -> float:
        jitter = random.uniform(0, self.policy.random_delay_seconds)
        return self.policy.min_delay_seconds + jitter

    def wait(self) -> None:
        """Block until the next request is allowed."""
        with self._lock:
            now = time.monotonic()

            # Minimum spacing since the previous call
            if self._last_request_time:
                elapsed = now - self._last_request_time
                interval = self._next_interval()
                if elapsed < interval:
                    time.sleep(interval - elapsed)
                    now = time.monotonic()

            # Rolling per-minute cap
            cap = max(self.policy.max_requests_per_minute, 1)
            while self._recent and now - self._recent[0] >= self.WINDOW_SECONDS:
                self._recent.popleft()
            if len(self._recent) >= cap:
                time.sleep(self.WINDOW_SECONDS - (now - self._recent[0]))
                now = time.monotonic()
                self._recent.popleft()

            self._last_request_time = now
            self._recent.append(now)


class RateLimiterRegistry:
    """Shared registry handing out one RateLimiter per source name."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self._limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, source: str) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(source)
            if limiter is None:
                limiter = RateLimiter(self.config.rate_limit_for(source))
                self._limiters[source] = limiter
            return limiter

    def wait(self, source: str) -> None:
        """Block until ``source`` may be called again."""
        self.get(source).wait()
