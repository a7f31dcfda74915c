"""Configuration management for the valuation engine.

Runtime settings (timeouts, pacing, queue and cache sizing) come from
environment variables. Valuation parameters (windows, percentiles,
discounts) load from config/settings.yaml so they can be tuned without
touching the algorithm.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = _PROJECT_ROOT / "config"
load_dotenv(_PROJECT_ROOT / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RateLimitPolicy:
    """Pacing rules for one source."""

    min_delay_seconds: float = 0.5
    random_delay_seconds: float = 0.5
    max_requests_per_minute: int = 30


def _default_rate_limits() -> dict[str, RateLimitPolicy]:
    return {
        "autoscout24": RateLimitPolicy(0.5, 0.5, 30),
        # 1 request every 10s at most, plus up to 5s jitter
        "subito": RateLimitPolicy(10.0, 5.0, 6),
    }


@dataclass
class Config:
    """Central runtime configuration loaded from environment variables."""

    # Database
    database_path: str = field(
        default_factory=lambda: os.getenv(
            "DATABASE_PATH", "data/valuation_engine.db"
        )
    )

    # Scraping
    proxy_list: list[str] = field(default_factory=list)
    request_timeout: int = 15
    browser_timeout: int = 30
    max_retries: int = 1
    page_delay_seconds: float = 0.5
    max_pages: int = 5
    browser_headless: bool = True
    subito_enabled: bool = True
    rate_limits: dict[str, RateLimitPolicy] = field(
        default_factory=_default_rate_limits
    )

    # Aggregation
    min_results_threshold: int = 10

    # Cache
    cache_backend: str = "memory"  # memory | sqlite
    cache_ttl_hours: int = 24
    cache_max_entries: int = 500

    # Deferred work queue
    queue_max_size: int = 500
    queue_max_attempts: int = 3
    queue_batch_size: int = 5
    queue_item_delay_seconds: float = 2.0
    queue_stale_minutes: int = 30

    # Sources
    autoscout24_base_url: str = "https://www.autoscout24.it"
    subito_base_url: str = "https://www.subito.it"

    def __post_init__(self) -> None:
        """Load overrides from environment."""
        if timeout := os.getenv("REQUEST_TIMEOUT"):
            self.request_timeout = int(timeout)
        if timeout := os.getenv("BROWSER_TIMEOUT"):
            self.browser_timeout = int(timeout)
        if retries := os.getenv("MAX_RETRIES"):
            self.max_retries = max(1, int(retries))
        if proxies := os.getenv("PROXY_LIST"):
            self.proxy_list = [p.strip() for p in proxies.split(",") if p.strip()]
        if delay := os.getenv("PAGE_DELAY_SECONDS"):
            self.page_delay_seconds = float(delay)
        if pages := os.getenv("MAX_PAGES"):
            self.max_pages = int(pages)
        if threshold := os.getenv("MIN_RESULTS_THRESHOLD"):
            self.min_results_threshold = int(threshold)
        if backend := os.getenv("CACHE_BACKEND"):
            self.cache_backend = backend.strip().lower()
        if ttl := os.getenv("CACHE_TTL_HOURS"):
            self.cache_ttl_hours = int(ttl)
        if entries := os.getenv("CACHE_MAX_ENTRIES"):
            self.cache_max_entries = int(entries)
        if size := os.getenv("QUEUE_MAX_SIZE"):
            self.queue_max_size = int(size)
        if attempts := os.getenv("QUEUE_MAX_ATTEMPTS"):
            self.queue_max_attempts = int(attempts)
        if batch := os.getenv("QUEUE_BATCH_SIZE"):
            self.queue_batch_size = int(batch)
        if delay := os.getenv("QUEUE_ITEM_DELAY_SECONDS"):
            self.queue_item_delay_seconds = float(delay)
        if stale := os.getenv("QUEUE_STALE_MINUTES"):
            self.queue_stale_minutes = int(stale)
        if url := os.getenv("AUTOSCOUT24_BASE_URL"):
            self.autoscout24_base_url = url
        if url := os.getenv("SUBITO_BASE_URL"):
            self.subito_base_url = url
        self.browser_headless = _env_bool("BROWSER_HEADLESS", self.browser_headless)
        self.subito_enabled = _env_bool("SUBITO_ENABLED", self.subito_enabled)

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_hours * 3600

    def rate_limit_for(self, source: str) -> RateLimitPolicy:
        """Return the pacing policy for a source (default policy if unknown)."""
        return self.rate_limits.get(source, RateLimitPolicy())

    @property
    def database_abs_path(self) -> Path:
        """Resolve database path relative to project root."""
        p = Path(self.database_path)
        if p.is_absolute():
            return p
        return _PROJECT_ROOT / p


class ConfidenceThresholds(BaseModel):
    """Sample-count / dispersion thresholds for the confidence level."""
    high_samples: int = 40
    high_max_iqr_ratio: float = 0.20
    medium_samples: int = 20


class ValuationConfig(BaseModel):
    """Tunable parameters of the valuation algorithm."""

    # Standard search window: ±1 year, ±15% km
    year_window: int = 1
    km_window_percent: float = 0.15

    # Fallback window when the standard one finds too few listings
    extended_year_window: int = 2
    extended_km_window_percent: float = 0.30
    min_listings_before_widening: int = 5

    # Outlier trimming: drop below P10 and above P90
    outlier_low_percentile: float = 10
    outlier_high_percentile: float = 90
    min_samples: int = 3

    # Dealer offer: 14% below the condition-adjusted median
    dealer_discount_percent: float = 0.14

    condition_adjustments: dict[str, float] = Field(
        default_factory=lambda: {
            "poor": -0.07,
            "normal": 0.0,
            "excellent": 0.05,
        }
    )
    confidence_thresholds: ConfidenceThresholds = Field(
        default_factory=ConfidenceThresholds
    )

    @classmethod
    def load(cls, path: Path | None = None) -> ValuationConfig:
        """Load from config/settings.yaml, falling back to defaults."""
        settings_path = path or CONFIG_DIR / "settings.yaml"
        if settings_path.exists():
            with open(settings_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls(**data.get("valuation", {}))
        return cls()
