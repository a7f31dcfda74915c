"""Tests for the aggregator: priority fallback, deferral, dedup, failure isolation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from valuation_engine.common.config import Config
from valuation_engine.common.models import (
    AggregationMode,
    Listing,
    QueuedRequest,
    SearchParams,
)
from valuation_engine.datasources.aggregator import Aggregator
from valuation_engine.datasources.base_source import BaseSource


class FakeSource(BaseSource):
    def __init__(self, name: str, priority: int, listings=None, error=None, available=True):
        super().__init__(Config())
        self.name = name
        self.priority = priority
        self.listings = listings or []
        self.error = error
        self.available = available
        self.calls = 0
        self.closed = False

    def fetch_listings(self, input, params):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.listings)

    def is_available(self):
        return self.available

    def close(self):
        self.closed = True


def _listings(source: str, guids: list[str]) -> list[Listing]:
    return [Listing(guid=g, price=9000 + i, mileage=1000, source=source) for i, g in enumerate(guids)]


@pytest.fixture
def params() -> SearchParams:
    return SearchParams(2018, 2020, 51000, 69000)


def _guids(prefix: str, n: int) -> list[str]:
    return [f"{prefix}{i}" for i in range(n)]


class TestRegistry:
    def test_sources_sorted_by_priority(self):
        secondary = FakeSource("subito", 2)
        primary = FakeSource("autoscout24", 1)
        agg = Aggregator([secondary, primary], config=Config())
        assert [s.name for s in agg.sources] == ["autoscout24", "subito"]
        assert agg.get_source("subito") is secondary
        assert agg.get_source("nope") is None

    def test_register_replaces_same_name(self):
        agg = Aggregator([FakeSource("a", 1)], config=Config())
        replacement = FakeSource("a", 3)
        agg.register(replacement)
        assert agg.sources == [replacement]

    def test_close_closes_all_sources(self):
        sources = [FakeSource("a", 1), FakeSource("b", 2)]
        with Aggregator(sources, config=Config()):
            pass
        assert all(s.closed for s in sources)


class TestAggregate:
    def test_primary_enough_skips_secondary(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", _guids("a", 10)))
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]))
        queue = MagicMock()
        agg = Aggregator([primary, secondary], queue, Config())

        result = agg.aggregate(panda_input, params, AggregationMode.THOROUGH)

        assert len(result.listings) == 10
        assert secondary.calls == 0
        queue.enqueue.assert_not_called()
        assert result.enriched is False
        assert result.sources == {"autoscout24": 10}

    def test_fast_mode_defers_secondary(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", _guids("a", 3)))
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]))
        queue = MagicMock()
        queue.enqueue.return_value = QueuedRequest(input=panda_input, params=params, source="subito", id="q1")
        agg = Aggregator([primary, secondary], queue, Config())

        result = agg.aggregate(panda_input, params)

        assert secondary.calls == 0
        queue.enqueue.assert_called_once_with(panda_input, params, "subito")
        assert result.queued == ["q1"]
        assert result.enriched is False
        assert len(result.listings) == 3

    def test_fast_mode_without_deferral_queries_primary_only(self, panda_input, params):
        primary = FakeSource("autoscout24", 1)
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]))
        queue = MagicMock()
        agg = Aggregator([primary, secondary], queue, Config())

        result = agg.aggregate(panda_input, params, defer=False)

        assert primary.calls == 1
        assert secondary.calls == 0
        queue.enqueue.assert_not_called()
        assert result.queued == []

    def test_defer_secondaries_below_threshold(self, panda_input, params):
        queue = MagicMock()
        queue.enqueue.return_value = QueuedRequest(input=panda_input, params=params, source="subito", id="q7")
        agg = Aggregator(
            [FakeSource("autoscout24", 1), FakeSource("subito", 2)], queue, Config()
        )

        assert agg.defer_secondaries(panda_input, params, found=3) == ["q7"]
        queue.enqueue.assert_called_once_with(panda_input, params, "subito")

    def test_defer_secondaries_at_threshold_queues_nothing(self, panda_input, params):
        queue = MagicMock()
        agg = Aggregator(
            [FakeSource("autoscout24", 1), FakeSource("subito", 2)], queue, Config()
        )
        assert agg.defer_secondaries(panda_input, params, found=10) == []
        queue.enqueue.assert_not_called()

    def test_fast_mode_without_queue(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", ["a"]))
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]))
        result = Aggregator([primary, secondary], config=Config()).aggregate(panda_input, params)
        assert secondary.calls == 0
        assert result.queued == []

    def test_full_queue_not_reported(self, panda_input, params):
        queue = MagicMock()
        queue.enqueue.return_value = None
        agg = Aggregator([FakeSource("a", 1), FakeSource("b", 2)], queue, Config())
        assert agg.aggregate(panda_input, params).queued == []

    def test_thorough_runs_secondary_and_dedups(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", ["x", "y", "z"]))
        secondary = FakeSource("subito", 2, _listings("subito", ["y", "s1", "s2"]))
        agg = Aggregator([primary, secondary], MagicMock(), Config())

        result = agg.aggregate_sync(panda_input, params)

        assert [l.guid for l in result.listings] == ["x", "y", "z", "s1", "s2"]
        # duplicate keeps the primary's copy
        assert result.listings[1].source == "autoscout24"
        assert result.sources == {"autoscout24": 3, "subito": 3}
        assert result.enriched is True
        assert result.queued == []
        assert result.fetch_time_ms >= 0

    def test_unavailable_secondary_skipped(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", ["a"]))
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]), available=False)
        result = Aggregator([primary, secondary], config=Config()).aggregate_sync(panda_input, params)
        assert secondary.calls == 0
        assert result.enriched is False

    def test_primary_failure_is_zero_contribution(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, error=RuntimeError("parser exploded"))
        secondary = FakeSource("subito", 2, _listings("subito", ["s1"]))
        result = Aggregator([primary, secondary], config=Config()).aggregate_sync(panda_input, params)
        assert result.sources == {"autoscout24": 0, "subito": 1}
        assert [l.guid for l in result.listings] == ["s1"]

    def test_secondary_failure_still_marks_enriched(self, panda_input, params):
        primary = FakeSource("autoscout24", 1, _listings("autoscout24", ["a"]))
        secondary = FakeSource("subito", 2, error=TimeoutError("browser"))
        result = Aggregator([primary, secondary], config=Config()).aggregate_sync(panda_input, params)
        assert result.sources["subito"] == 0
        assert result.enriched is True
        assert len(result.listings) == 1

    def test_stops_consulting_secondaries_once_threshold_met(self, panda_input, params):
        primary = FakeSource("p", 1, _listings("p", ["a"]))
        second = FakeSource("s", 2, _listings("s", _guids("s", 12)))
        third = FakeSource("t", 3, _listings("t", ["t1"]))
        result = Aggregator([primary, second, third], config=Config()).aggregate_sync(panda_input, params)
        assert third.calls == 0
        assert len(result.listings) == 13

    def test_threshold_from_config(self, panda_input, params):
        config = Config()
        config.min_results_threshold = 2
        primary = FakeSource("p", 1, _listings("p", ["a", "b"]))
        second = FakeSource("s", 2, _listings("s", ["c"]))
        Aggregator([primary, second], config=config).aggregate_sync(panda_input, params)
        assert second.calls == 0

    def test_no_sources(self, panda_input, params):
        result = Aggregator(config=Config()).aggregate(panda_input, params)
        assert result.listings == []
        assert result.sources == {}
