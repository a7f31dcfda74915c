"""Base class for marketplace listing sources.

Every source turns a ValuationInput plus a SearchParams window into a list
of normalised Listing objects. New marketplaces are added by subclassing
BaseSource and registering the instance with the Aggregator.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.models import Listing, SearchParams, ValuationInput

logger = logging.getLogger(__name__)

DECIMAL_PATTERN = re.compile(r"^\s*(\d[\d.,\s]*?)[.,]\d{1,2}\s*$")


class BaseSource(ABC):
    """Abstract base for listing sources.

    Attributes:
        name: Source identifier, also used as the rate-limit and cache key.
        priority: Lower runs first; the lowest-priority source is primary.
        requires_browser: Heavy sources that need a rendered browser page.
    """

    name: str = ""
    priority: int = 1
    requires_browser: bool = False

    def __init__(
        self,
        config: Config | None = None,
        cache: ValuationCache | None = None,
    ) -> None:
        self.config = config or Config()
        self.cache = cache

    @abstractmethod
    def fetch_listings(
        self,
        input: ValuationInput,
        params: SearchParams,
    ) -> list[Listing]:
        """Return listings for ``input`` within the ``params`` window."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Health check: can this source be queried right now?"""
        ...

    @staticmethod
    def _parse_int(text: str | int | float | None) -> int | None:
        """Extract an integer from '12.500', '12500', '4500.00', 12500.0 and the like.

        A machine-formatted decimal (one or two fraction digits) keeps only
        its integer part; any other separators are thousands separators.
        """
        if text is None:
            return None
        if isinstance(text, (int, float)):
            return int(text)
        decimal = DECIMAL_PATTERN.match(str(text))
        if decimal:
            text = decimal.group(1)
        digits = re.sub(r"[^\d]", "", str(text))
        return int(digits) if digits else None

    @staticmethod
    def _slugify(text: str) -> str:
        return re.sub(r"\s+", "-", text.strip().lower())

    def close(self) -> None:
        """Release held resources. Default: nothing to release."""

    def __enter__(self):
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"
