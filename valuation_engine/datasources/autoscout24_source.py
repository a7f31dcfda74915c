"""AutoScout24 Italy listing source (primary).

AutoScout24 serves search results as server-rendered HTML where each ad is
an ``<article>`` carrying its key facts as ``data-*`` attributes, so plain
HTTP requests are enough: no browser needed.

Search URL: GET https://www.autoscout24.it/lst[/<brand>/<model>]?...
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import date

import requests
from bs4 import BeautifulSoup

from ..cache.fingerprint import page_fingerprint
from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.http_client import HTTPClient
from ..common.models import (
    FuelType,
    GearboxType,
    Listing,
    SearchParams,
    SellerType,
    ValuationInput,
    is_price_in_band,
)
from ..common.rate_limiter import RateLimiterRegistry
from .base_source import BaseSource

logger = logging.getLogger(__name__)

# URL slugs when numeric make/model ids are unknown
BRAND_SLUGS = {
    "abarth": "abarth",
    "alfa romeo": "alfa-romeo",
    "audi": "audi",
    "bmw": "bmw",
    "byd": "byd",
    "chevrolet": "chevrolet",
    "citroen": "citroen",
    "cupra": "cupra",
    "dacia": "dacia",
    "ds": "ds-automobiles",
    "ds automobiles": "ds-automobiles",
    "fiat": "fiat",
    "ford": "ford",
    "genesis": "genesis",
    "honda": "honda",
    "hyundai": "hyundai",
    "jaguar": "jaguar",
    "jeep": "jeep",
    "kia": "kia",
    "lancia": "lancia",
    "land rover": "land-rover",
    "lexus": "lexus",
    "mazda": "mazda",
    "mercedes-benz": "mercedes-benz",
    "mg": "mg",
    "mini": "mini",
    "mitsubishi": "mitsubishi",
    "nissan": "nissan",
    "opel": "opel",
    "peugeot": "peugeot",
    "polestar": "polestar",
    "porsche": "porsche",
    "renault": "renault",
    "seat": "seat",
    "skoda": "skoda",
    "smart": "smart",
    "ssangyong": "ssangyong",
    "subaru": "subaru",
    "suzuki": "suzuki",
    "tesla": "tesla",
    "toyota": "toyota",
    "volkswagen": "volkswagen",
    "volvo": "volvo",
}

FUEL_CODES = {
    FuelType.PETROL: "B",
    FuelType.DIESEL: "D",
    FuelType.LPG: "L",
    FuelType.CNG: "M",
    FuelType.HYBRID: "2",
    FuelType.ELECTRIC: "E",
}

# Source fuel code -> (normalised value, label)
FUEL_CODE_LABELS = {
    "B": ("petrol", "Petrol"),
    "D": ("diesel", "Diesel"),
    "L": ("lpg", "LPG"),
    "M": ("cng", "CNG"),
    "E": ("electric", "Electric"),
    "2": ("hybrid", "Hybrid (petrol)"),
    "3": ("hybrid-diesel", "Hybrid (diesel)"),
    "C": ("plug-in-hybrid", "Plug-in hybrid"),
    "O": ("other", "Other"),
}

# "automatic" must also probe semi-automatic ("S")
GEARBOX_SEARCH_CODES = {
    GearboxType.MANUAL: ["M"],
    GearboxType.AUTOMATIC: ["A", "S"],
}

PAGE_SIZE = 20
# A page with fewer results than this means the result set is exhausted
EXHAUSTED_BELOW = 10

TAXONOMY_PATH = "/as24-home/api/taxonomy/cars/makes/{make_id}/models/{model_id}/modelLines"

# Version filters on the search page, as checkbox labels or filter links
VERSION_LABEL_PATTERN = re.compile(r"ve_([a-z0-9-]+)[^>]*>([^<]+)<", re.IGNORECASE)
VERSION_LINK_PATTERN = re.compile(r"/lst/[^/]+/[^/]+/ve_([a-z0-9-]+)", re.IGNORECASE)


@dataclass(frozen=True)
class ModelLine:
    """A version family of a model; ``id`` is 0 when only the slug is known."""

    id: int
    name: str
    slug: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "slug": self.slug}


class AutoScout24Source(BaseSource):
    """Primary source: paginated HTML search on autoscout24.it.

    Usage:
        source = AutoScout24Source(config, cache)
        listings = source.fetch_listings(input, SearchParams(2018, 2020, 40000, 80000))
    """

    name = "autoscout24"
    priority = 1
    requires_browser = False

    def __init__(
        self,
        config: Config | None = None,
        cache: ValuationCache | None = None,
        rate_limiters: RateLimiterRegistry | None = None,
    ) -> None:
        super().__init__(config, cache)
        self._client = HTTPClient(self.config, source=self.name, rate_limiters=rate_limiters)

    @property
    def search_url(self) -> str:
        return f"{self.config.autoscout24_base_url}/lst"

    def fetch_listings(
        self,
        input: ValuationInput,
        params: SearchParams,
    ) -> list[Listing]:
        """Fetch all pages for every gearbox code of ``input``.

        Pages are fetched sequentially; a short or failed page ends the
        pagination for its gearbox code. Duplicates keep the first copy.
        """
        gear_codes = GEARBOX_SEARCH_CODES.get(input.gearbox, ["M"])
        listings: list[Listing] = []
        seen: set[str] = set()

        logger.info(
            "[%s] Searching %s %s, gear codes %s",
            self.name, input.brand, input.model, ", ".join(gear_codes),
        )

        for gear_code in gear_codes:
            for page in range(1, params.max_pages + 1):
                page_listings = self._fetch_page(input, params, page, gear_code)

                added = 0
                for listing in page_listings:
                    if listing.guid not in seen:
                        seen.add(listing.guid)
                        listings.append(listing)
                        added += 1

                logger.info(
                    "[%s] gear=%s page %d: %d found, %d new",
                    self.name, gear_code, page, len(page_listings), added,
                )

                if len(page_listings) < EXHAUSTED_BELOW:
                    break

                if page < params.max_pages:
                    time.sleep(self.config.page_delay_seconds)

        logger.info("[%s] Total unique listings: %d", self.name, len(listings))
        return listings

    def _fetch_page(
        self,
        input: ValuationInput,
        params: SearchParams,
        page: int,
        gear_code: str,
    ) -> list[Listing]:
        """Fetch and parse one result page, going through the page cache.

        Network errors, timeouts and non-2xx answers yield an empty page.
        """
        cache_key = page_fingerprint(self.name, input, params, page, gear_code)
        if self.cache is not None:
            cached = self.cache.get_page(cache_key)
            if cached is not None:
                logger.debug("[%s] Cache hit for page %d, gear=%s", self.name, page, gear_code)
                return cached

        url, query = self.build_search_request(input, params, page, gear_code)
        try:
            resp = self._client.get(url, params=query, timeout=self.config.request_timeout)
        except requests.RequestException as exc:
            logger.warning("[%s] Page %d (gear=%s) failed: %s", self.name, page, gear_code, exc)
            return []

        listings = self.parse_listings(resp.text)
        if self.cache is not None:
            self.cache.set_page(cache_key, listings)
        return listings

    def build_search_request(
        self,
        input: ValuationInput,
        params: SearchParams,
        page: int = 1,
        gear_code: str | None = None,
        include_fuel: bool = True,
    ) -> tuple[str, dict[str, str]]:
        """Return (url, query params) for one search page."""
        query = {
            "cy": "I",
            "fregfrom": str(params.year_min),
            "fregto": str(params.year_max),
            "kmfrom": str(params.km_min),
            "kmto": str(params.km_max),
            "gear": gear_code or GEARBOX_SEARCH_CODES[input.gearbox][0],
            "sort": "standard",
            "desc": "0",
            "atype": "C",
            "ustate": "N,U",
            "size": str(PAGE_SIZE),
            "page": str(page),
            "damaged_listing": "exclude",
        }
        if include_fuel:
            query["fuel"] = FUEL_CODES.get(input.fuel, "B")

        if input.power_range:
            hp_from, hp_to = input.power_range.hp_bounds
            query["powertype"] = "hp"
            if hp_from:
                query["powerfrom"] = str(hp_from)
            if hp_to:
                query["powerto"] = str(hp_to)

        if input.has_ids:
            query["mmm"] = f"{input.make_id}|{input.model_id}|"
            return self.search_url, query

        brand = BRAND_SLUGS.get(input.brand.lower(), self._slugify(input.brand))
        model = self._slugify(input.model)
        return f"{self.search_url}/{brand}/{model}", query

    @classmethod
    def parse_listings(cls, html: str) -> list[Listing]:
        """Extract listings from a search result page.

        Each ad is an ``<article>`` with data-guid, data-price, data-mileage,
        data-first-registration (MM-YYYY), data-fuel-type, data-seller-type.
        Records with a missing or out-of-band price are dropped.
        """
        soup = BeautifulSoup(html, "lxml")
        listings: list[Listing] = []
        seen: set[str] = set()

        for article in soup.find_all("article", attrs={"data-price": True}):
            try:
                listing = cls._parse_article(article)
            except Exception:
                logger.debug("Failed to parse article", exc_info=True)
                continue
            if listing is None or listing.guid in seen:
                continue
            seen.add(listing.guid)
            listings.append(listing)

        return listings

    @classmethod
    def _parse_article(cls, article) -> Listing | None:
        price = cls._parse_int(article.get("data-price"))
        if price is None or not is_price_in_band(price):
            return None

        mileage = cls._parse_int(article.get("data-mileage")) or 0
        guid = article.get("data-guid") or Listing.synthesize_guid("as24", price, mileage)

        first_reg = article.get("data-first-registration") or ""
        year_match = re.search(r"(\d{4})$", first_reg.strip())
        year = int(year_match.group(1)) if year_match else 0

        seller = article.get("data-seller-type", "")
        seller_type = SellerType.PRIVATE if seller == "p" else SellerType.DEALER

        return Listing(
            guid=guid,
            price=price,
            mileage=mileage,
            source=cls.name,
            first_registration=first_reg,
            fuel_code=article.get("data-fuel-type") or "",
            seller_type=seller_type,
            year=year,
            km=mileage,
        )

    def fetch_available_fuels(self, make_id: int, model_id: int) -> list[str]:
        """Fuel codes actually on sale for a model over the last 10 years.

        Returns a sorted list of AutoScout24 fuel codes (see FUEL_CODE_LABELS);
        empty on any failure.
        """
        year = date.today().year
        query = {
            "cy": "I",
            "fregfrom": str(year - 10),
            "fregto": str(year),
            "kmfrom": "0",
            "kmto": "200000",
            "gear": "M",
            "sort": "standard",
            "desc": "0",
            "atype": "C",
            "ustate": "N,U",
            "size": str(PAGE_SIZE),
            "page": "1",
            "damaged_listing": "exclude",
            "mmm": f"{make_id}|{model_id}|",
        }
        try:
            resp = self._client.get(self.search_url, params=query)
        except requests.RequestException as exc:
            logger.warning("[%s] Fuel lookup failed for %s/%s: %s", self.name, make_id, model_id, exc)
            return []

        codes = {
            listing.fuel_code.upper()
            for listing in self.parse_listings(resp.text)
            if listing.fuel_code
        }
        return sorted(codes)

    def fetch_model_lines(self, make_id: int, model_id: int) -> list[ModelLine]:
        """Model lines (versions) of a model.

        Reads the taxonomy JSON endpoint first and falls back to the version
        filters of the search page. Empty on any failure.
        """
        url = self.config.autoscout24_base_url + TAXONOMY_PATH.format(
            make_id=make_id, model_id=model_id
        )
        try:
            resp = self._client.get(url, headers={"Accept": "application/json"})
            lines = self.parse_model_lines(resp.json())
            logger.info(
                "[%s] %d model lines for %s/%s", self.name, len(lines), make_id, model_id
            )
            return lines
        except (requests.RequestException, ValueError) as exc:
            logger.info("[%s] Taxonomy lookup failed (%s), reading search filters", self.name, exc)

        try:
            resp = self._client.get(
                self.search_url, params={"mmm": f"{make_id}|{model_id}|", "cy": "I"}
            )
        except requests.RequestException as exc:
            logger.warning(
                "[%s] Model line lookup failed for %s/%s: %s", self.name, make_id, model_id, exc
            )
            return []
        return self.parse_version_filters(resp.text)

    @classmethod
    def parse_model_lines(cls, data) -> list[ModelLine]:
        """Taxonomy payload: a bare list or ``{"modelLines": [...]}``."""
        if isinstance(data, dict):
            data = data.get("modelLines")
        items = data if isinstance(data, list) else []
        lines = []
        for item in items:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            name = str(item["name"]).strip()
            lines.append(
                ModelLine(
                    id=cls._parse_int(item.get("id")) or 0,
                    name=name,
                    slug=item.get("slug") or cls._slugify(name),
                )
            )
        return lines

    @staticmethod
    def parse_version_filters(html: str) -> list[ModelLine]:
        lines: dict[str, ModelLine] = {}
        for match in VERSION_LABEL_PATTERN.finditer(html):
            slug, name = match.group(1).lower(), match.group(2).strip()
            if name and slug not in lines:
                lines[slug] = ModelLine(id=0, name=name, slug=slug)
        for match in VERSION_LINK_PATTERN.finditer(html):
            slug = match.group(1).lower()
            if slug not in lines:
                lines[slug] = ModelLine(id=0, name=slug.replace("-", " ").title(), slug=slug)
        return list(lines.values())

    def is_available(self) -> bool:
        return self._client.head(self.config.autoscout24_base_url, timeout=5)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AutoScout24Source:
        return self
