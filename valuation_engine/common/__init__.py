"""Common utilities shared across the valuation engine."""

from .config import Config, RateLimitPolicy, ValuationConfig
from .http_client import HTTPClient
from .logging import setup_logging
from .rate_limiter import RateLimiter, RateLimiterRegistry
from .stealth import StealthPolicy

__all__ = [
    "Config",
    "HTTPClient",
    "RateLimitPolicy",
    "RateLimiter",
    "RateLimiterRegistry",
    "StealthPolicy",
    "ValuationConfig",
    "setup_logging",
]
