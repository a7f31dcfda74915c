"""Subito.it listing source (secondary, browser-rendered).

Subito.it renders results client-side and runs bot detection, so this
source drives a headless Chromium through a stealth session and behaves
like a visitor: it lands on the car section, accepts cookies, types the
query into the on-page search box and scrolls the results.

It costs a browser start and several seconds of human-like pauses per
call. Only the background queue consumer (THOROUGH mode) may use it;
never call it on a user-facing request path.
"""

from __future__ import annotations

import json
import logging
import re
from urllib.parse import urlencode

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..cache.fingerprint import page_fingerprint
from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.models import (
    Listing,
    SearchParams,
    SellerType,
    ValuationInput,
    is_price_in_band,
)
from ..common.rate_limiter import RateLimiterRegistry
from ..common.stealth import StealthPolicy
from .base_source import BaseSource
from .browser_session import BrowserSession

logger = logging.getLogger(__name__)

SEARCH_PATH = "/annunci-italia/vendita/auto/"

COOKIE_BUTTON = (
    'button:has-text("Accetta"), button:has-text("Accetto"), '
    '#didomi-notice-agree-button, [data-testid="accept-button"]'
)
SEARCH_INPUT = 'input[type="search"], input[placeholder*="Cerca"], input[name="q"]'

# "€ 12.500" or "12.500 €"
PRICE_PATTERN = re.compile(r"€\s*([\d.]+)|(\d{1,3}(?:\.\d{3})*)\s*€")
MAX_FALLBACK_PRICES = 50


class SubitoSource(BaseSource):
    """Secondary source: Subito.it via a stealth browser session.

    Usage:
        with SubitoSource(config, cache) as source:
            listings = source.fetch_listings(input, params)
    """

    name = "subito"
    priority = 2
    requires_browser = True

    def __init__(
        self,
        config: Config | None = None,
        cache: ValuationCache | None = None,
        rate_limiters: RateLimiterRegistry | None = None,
        session: BrowserSession | None = None,
        policy: StealthPolicy | None = None,
    ) -> None:
        super().__init__(config, cache)
        self.policy = policy or StealthPolicy()
        self._session = session or BrowserSession(
            self.policy, headless=self.config.browser_headless
        )
        self._rate_limiters = rate_limiters or RateLimiterRegistry(self.config)

    @property
    def home_url(self) -> str:
        return f"{self.config.subito_base_url}{SEARCH_PATH}"

    @property
    def _timeout_ms(self) -> int:
        return self.config.browser_timeout * 1000

    def build_search_url(self, input: ValuationInput, params: SearchParams) -> str:
        query = {
            "q": f"{input.brand.lower()} {input.model.lower()}",
            "ys": str(params.year_min),
            "ye": str(params.year_max),
            "kms": str(params.km_min),
            "kme": str(params.km_max),
            "order": "datedesc",
        }
        return f"{self.home_url}?{urlencode(query)}"

    def fetch_listings(
        self,
        input: ValuationInput,
        params: SearchParams,
    ) -> list[Listing]:
        """Run one stealth search and parse the rendered result page.

        Browser timeouts and Playwright errors yield an empty list.
        """
        cache_key = page_fingerprint(self.name, input, params, page=1)
        if self.cache is not None:
            cached = self.cache.get_page(cache_key)
            if cached is not None:
                logger.info("[%s] Cache hit", self.name)
                return cached

        self._rate_limiters.wait(self.name)
        logger.info("[%s] Starting stealth search for %s %s", self.name, input.brand, input.model)

        try:
            with self._session.new_page() as page:
                html = self._search(page, input, params)
        except PlaywrightTimeoutError as exc:
            logger.warning("[%s] Timed out: %s", self.name, exc)
            return []
        except PlaywrightError as exc:
            logger.warning("[%s] Browser error: %s", self.name, exc)
            return []

        if html is None:
            return []

        listings = self.parse_listings(html)
        logger.info("[%s] Found %d listings", self.name, len(listings))

        if listings and self.cache is not None:
            self.cache.set_page(cache_key, listings)
        return listings

    def _search(self, page, input: ValuationInput, params: SearchParams) -> str | None:
        """Navigate like a visitor and return the results HTML (None if blocked)."""
        page.goto(self.home_url, wait_until="domcontentloaded", timeout=self._timeout_ms)
        self.policy.human_delay(2, 4)

        self._accept_cookies(page)

        if self.policy.looks_blocked(page.title()):
            logger.warning("[%s] Home page blocked by anti-bot", self.name)
            return None

        query = f"{input.brand} {input.model}"
        search_input = page.locator(SEARCH_INPUT).first
        try:
            search_input.wait_for(state="visible", timeout=5000)
            search_input.click()
            self.policy.human_delay(0.3, 0.6)
            search_input.fill(query)
            self.policy.human_delay(0.5, 1.0)
            page.keyboard.press("Enter")
            logger.debug("[%s] Search submitted: %s", self.name, query)
        except PlaywrightTimeoutError:
            logger.debug("[%s] Search box not found, using direct URL", self.name)
            page.goto(
                self.build_search_url(input, params),
                wait_until="domcontentloaded",
                timeout=self._timeout_ms,
            )

        # Results load, then client-side rendering settles
        self.policy.human_delay(3, 5)
        self.policy.human_delay(2, 4)

        # Scroll to trigger lazy content
        page.evaluate("window.scrollTo({ top: 500, behavior: 'smooth' })")
        self.policy.human_delay(1, 2)
        page.evaluate("window.scrollTo({ top: 0, behavior: 'smooth' })")
        self.policy.human_delay(0.5, 1)

        if self.policy.looks_blocked(page.title()):
            logger.warning("[%s] Search blocked by anti-bot", self.name)
            return None

        html = page.content()
        if "Access Denied" in html:
            logger.warning("[%s] Result page contains Access Denied", self.name)
            return None
        return html

    def _accept_cookies(self, page) -> None:
        button = page.locator(COOKIE_BUTTON).first
        try:
            button.wait_for(state="visible", timeout=3000)
            button.click()
            logger.debug("[%s] Cookie banner accepted", self.name)
            self.policy.human_delay(1, 2)
        except PlaywrightTimeoutError:
            pass

    # --- Parsing ---

    @classmethod
    def parse_listings(cls, html: str) -> list[Listing]:
        """Parse structured JSON-LD first, falling back to raw price matching."""
        listings = cls._parse_json_ld(html)
        if listings:
            return listings
        return cls._parse_price_fallback(html)

    @classmethod
    def _parse_json_ld(cls, html: str) -> list[Listing]:
        soup = BeautifulSoup(html, "lxml")
        listings: list[Listing] = []
        seen: set[str] = set()

        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                data = json.loads(script.string or "")
            except (json.JSONDecodeError, TypeError):
                continue

            blocks = data if isinstance(data, list) else [data]
            for block in blocks:
                if not isinstance(block, dict) or block.get("@type") != "ItemList":
                    continue
                for element in block.get("itemListElement") or []:
                    try:
                        listing = cls._parse_car(element.get("item") or {})
                    except Exception:
                        logger.debug("Failed to parse JSON-LD item", exc_info=True)
                        continue
                    if listing is None or listing.guid in seen:
                        continue
                    seen.add(listing.guid)
                    listings.append(listing)

        return listings

    @classmethod
    def _parse_car(cls, car: dict) -> Listing | None:
        if car.get("@type") != "Car":
            return None

        price = cls._parse_int((car.get("offers") or {}).get("price"))
        if price is None or not is_price_in_band(price):
            return None

        mileage = cls._parse_int((car.get("mileageFromOdometer") or {}).get("value")) or 0
        year_match = re.search(r"\d{4}", str(car.get("vehicleModelDate") or ""))
        year = int(year_match.group(0)) if year_match else 0

        ad_id = car.get("@id")
        guid = f"subito-{ad_id}" if ad_id else Listing.synthesize_guid("subito", price, mileage)

        return Listing(
            guid=guid,
            price=price,
            mileage=mileage,
            source=cls.name,
            first_registration=f"01-{year}" if year else "",
            fuel_code=str(car.get("fuelType") or ""),
            seller_type=SellerType.PRIVATE,
            year=year,
            km=mileage,
        )

    @classmethod
    def _parse_price_fallback(cls, html: str) -> list[Listing]:
        """Best effort: unique in-band prices found anywhere in the markup."""
        prices: list[int] = []
        for match in PRICE_PATTERN.finditer(html):
            price = int((match.group(1) or match.group(2)).replace(".", "") or 0)
            if is_price_in_band(price) and price not in prices:
                prices.append(price)

        if prices:
            logger.info("[%s] %d unique prices matched in markup", cls.name, len(prices))

        return [
            Listing(
                guid=f"subito-fallback-{price}",
                price=price,
                mileage=0,
                source=cls.name,
                seller_type=SellerType.PRIVATE,
            )
            for price in prices[:MAX_FALLBACK_PRICES]
        ]

    def is_available(self) -> bool:
        return self.config.subito_enabled

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> SubitoSource:
        return self
