"""Tests for the AutoScout24 source with inline HTML fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from valuation_engine.cache.valuation_cache import ValuationCache
from valuation_engine.common.config import Config
from valuation_engine.common.models import (
    GearboxType,
    PowerRange,
    SearchParams,
    SellerType,
)
from valuation_engine.datasources.autoscout24_source import AutoScout24Source, ModelLine


def _article(guid: str | None, price, mileage=50000, reg="03-2019", fuel="B", seller="d") -> str:
    guid_attr = f'data-guid="{guid}" ' if guid else ""
    return (
        f'<article class="cldt-summary-full-item" {guid_attr}data-price="{price}" '
        f'data-mileage="{mileage}" data-first-registration="{reg}" '
        f'data-fuel-type="{fuel}" data-seller-type="{seller}">'
        f"<h2>Fiat Panda</h2></article>"
    )


def _page(articles: list[str]) -> str:
    return f"<html><body><main>{''.join(articles)}</main></body></html>"


def _full_page(start: int, count: int = 20) -> str:
    return _page([_article(f"g{start + i}", 9000 + (start + i) * 10) for i in range(count)])


@pytest.fixture
def params() -> SearchParams:
    return SearchParams(2018, 2020, 51000, 69000, max_pages=5)


@pytest.fixture
def source() -> AutoScout24Source:
    src = AutoScout24Source(Config(), rate_limiters=MagicMock())
    src._client = MagicMock()
    return src


def _responses(*htmls: str) -> list[MagicMock]:
    return [MagicMock(text=html) for html in htmls]


class TestParseListings:
    def test_parses_data_attributes(self):
        html = _page([_article("abc-1", "12500", 80000, "07-2018", "D", "p")])
        [listing] = AutoScout24Source.parse_listings(html)
        assert listing.guid == "abc-1"
        assert listing.price == 12500
        assert listing.mileage == 80000
        assert listing.km == 80000
        assert listing.year == 2018
        assert listing.first_registration == "07-2018"
        assert listing.fuel_code == "D"
        assert listing.seller_type == SellerType.PRIVATE
        assert listing.source == "autoscout24"

    def test_dealer_is_default_seller(self):
        [listing] = AutoScout24Source.parse_listings(_page([_article("a", 9000, seller="")]))
        assert listing.seller_type == SellerType.DEALER

    def test_drops_invalid_and_out_of_band_prices(self):
        html = _page([
            _article("a", "abc"),
            _article("b", 400),
            _article("c", 600000),
            _article("d", 500),
            _article("e", 500000),
        ])
        assert [l.guid for l in AutoScout24Source.parse_listings(html)] == ["d", "e"]

    def test_missing_guid_is_synthesized(self):
        [listing] = AutoScout24Source.parse_listings(_page([_article(None, 9900, 45000)]))
        assert listing.guid == "as24-9900-45000"

    def test_within_page_duplicates_dropped(self):
        html = _page([_article("a", 9000), _article("a", 9100)])
        listings = AutoScout24Source.parse_listings(html)
        assert len(listings) == 1
        assert listings[0].price == 9000

    def test_articles_without_price_ignored(self):
        html = "<html><body><article data-guid='x'>ad</article></body></html>"
        assert AutoScout24Source.parse_listings(html) == []


class TestBuildSearchRequest:
    def test_slug_path_without_ids(self, source, panda_input, params):
        url, query = source.build_search_request(panda_input, params, page=2, gear_code="M")
        assert url == "https://www.autoscout24.it/lst/fiat/panda"
        assert query["fregfrom"] == "2018"
        assert query["fregto"] == "2020"
        assert query["kmfrom"] == "51000"
        assert query["kmto"] == "69000"
        assert query["gear"] == "M"
        assert query["page"] == "2"
        assert query["size"] == "20"
        assert query["fuel"] == "B"
        assert query["cy"] == "I"
        assert query["damaged_listing"] == "exclude"
        assert "mmm" not in query

    def test_ids_use_mmm_and_plain_path(self, source, panda_input, params):
        vi = panda_input.model_copy(update={"make_id": 28, "model_id": 1746})
        url, query = source.build_search_request(vi, params)
        assert url == "https://www.autoscout24.it/lst"
        assert query["mmm"] == "28|1746|"

    def test_multi_word_brand_slug(self, source, panda_input, params):
        vi = panda_input.model_copy(update={"brand": "Alfa Romeo", "model": "Giulia Sprint"})
        url, _ = source.build_search_request(vi, params)
        assert url.endswith("/lst/alfa-romeo/giulia-sprint")

    def test_power_range(self, source, panda_input, params):
        vi = panda_input.model_copy(update={"power_range": PowerRange.MEDIUM})
        _, query = source.build_search_request(vi, params)
        assert query["powertype"] == "hp"
        assert query["powerfrom"] == "120"
        assert query["powerto"] == "180"

    def test_without_fuel(self, source, panda_input, params):
        _, query = source.build_search_request(panda_input, params, include_fuel=False)
        assert "fuel" not in query


class TestFetchListings:
    def test_paginates_until_short_page(self, source, panda_input, params):
        source._client.get.side_effect = _responses(_full_page(0), _full_page(20), _page([_article("last", 9500)]))
        with patch("valuation_engine.datasources.autoscout24_source.time.sleep") as sleep:
            listings = source.fetch_listings(panda_input, params)
        assert len(listings) == 41
        assert source._client.get.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_stops_at_max_pages(self, source, panda_input):
        params = SearchParams(2018, 2020, 51000, 69000, max_pages=2)
        source._client.get.side_effect = _responses(_full_page(0), _full_page(20), _full_page(40))
        with patch("valuation_engine.datasources.autoscout24_source.time.sleep") as sleep:
            listings = source.fetch_listings(panda_input, params)
        assert len(listings) == 40
        assert source._client.get.call_count == 2
        assert sleep.call_count == 1

    def test_automatic_probes_semi_automatic_and_dedups(self, source, panda_input, params):
        vi = panda_input.model_copy(update={"gearbox": GearboxType.AUTOMATIC})
        source._client.get.side_effect = _responses(
            _page([_article("a", 9000), _article("b", 9100)]),
            _page([_article("b", 9100), _article("c", 9200)]),
        )
        with patch("valuation_engine.datasources.autoscout24_source.time.sleep"):
            listings = source.fetch_listings(vi, params)
        assert [l.guid for l in listings] == ["a", "b", "c"]
        gears = [c.kwargs["params"]["gear"] for c in source._client.get.call_args_list]
        assert gears == ["A", "S"]

    def test_http_error_yields_empty_page(self, source, panda_input, params):
        source._client.get.side_effect = requests.Timeout("slow")
        with patch("valuation_engine.datasources.autoscout24_source.time.sleep"):
            assert source.fetch_listings(panda_input, params) == []
        assert source._client.get.call_count == 1

    def test_pages_come_from_cache(self, panda_input, params):
        cache = ValuationCache()
        src = AutoScout24Source(Config(), cache=cache, rate_limiters=MagicMock())
        src._client = MagicMock()
        src._client.get.side_effect = _responses(_page([_article("a", 9000)]))
        first = src.fetch_listings(panda_input, params)
        second = src.fetch_listings(panda_input, params)
        assert first == second
        assert src._client.get.call_count == 1

    def test_failed_pages_are_not_cached(self, panda_input, params):
        cache = ValuationCache()
        src = AutoScout24Source(Config(), cache=cache, rate_limiters=MagicMock())
        src._client = MagicMock()
        src._client.get.side_effect = [requests.ConnectionError("down"), MagicMock(text=_page([_article("a", 9000)]))]
        assert src.fetch_listings(panda_input, params) == []
        assert len(src.fetch_listings(panda_input, params)) == 1


class TestAvailability:
    def test_is_available_uses_head(self, source):
        source._client.head.return_value = True
        assert source.is_available() is True
        source._client.head.assert_called_once_with("https://www.autoscout24.it", timeout=5)

    def test_fetch_available_fuels(self, source):
        source._client.get.return_value = MagicMock(
            text=_page([_article("a", 9000, fuel="d"), _article("b", 9100, fuel="B"), _article("c", 9200, fuel="D")])
        )
        assert source.fetch_available_fuels(28, 1746) == ["B", "D"]
        assert source._client.get.call_args.kwargs["params"]["mmm"] == "28|1746|"

    def test_fetch_available_fuels_failure(self, source):
        source._client.get.side_effect = requests.ConnectionError("down")
        assert source.fetch_available_fuels(28, 1746) == []


class TestModelLines:
    def test_taxonomy_list(self, source):
        source._client.get.return_value = MagicMock(
            json=MagicMock(return_value=[
                {"id": 101, "name": "Panda Cross", "slug": "cross"},
                {"id": 102, "name": "Panda City Life"},
            ])
        )
        lines = source.fetch_model_lines(28, 1746)
        assert lines == [
            ModelLine(101, "Panda Cross", "cross"),
            ModelLine(102, "Panda City Life", "panda-city-life"),
        ]
        url = source._client.get.call_args.args[0]
        assert url.endswith("/taxonomy/cars/makes/28/models/1746/modelLines")
        assert source._client.get.call_count == 1

    def test_taxonomy_object_form(self):
        data = {"modelLines": [{"id": "7", "name": "Sport"}, {"id": 8}, "junk"]}
        assert AutoScout24Source.parse_model_lines(data) == [ModelLine(7, "Sport", "sport")]
        assert AutoScout24Source.parse_model_lines({"other": []}) == []

    def test_falls_back_to_search_filters(self, source):
        html = (
            '<input id="ve_cross" type="checkbox"><label for="ve_cross">Cross</label>'
            '<a href="/lst/fiat/panda/ve_city-life">City Life</a>'
            '<a href="/lst/fiat/panda/ve_cross">Cross</a>'
        )
        source._client.get.side_effect = [
            requests.HTTPError("404"),
            MagicMock(text=html),
        ]
        lines = source.fetch_model_lines(28, 1746)
        assert [line.slug for line in lines] == ["cross", "city-life"]
        assert lines[1].name == "City Life"
        assert all(line.id == 0 for line in lines)
        assert source._client.get.call_args.kwargs["params"] == {"mmm": "28|1746|", "cy": "I"}

    def test_invalid_json_falls_back(self, source):
        source._client.get.side_effect = [
            MagicMock(json=MagicMock(side_effect=ValueError("not json"))),
            MagicMock(text="<html></html>"),
        ]
        assert source.fetch_model_lines(28, 1746) == []
        assert source._client.get.call_count == 2

    def test_both_lookups_fail(self, source):
        source._client.get.side_effect = requests.ConnectionError("down")
        assert source.fetch_model_lines(28, 1746) == []
