"""
Tests for the forecast / threshold cache providers and key-value stores.

Covers:
- Fresh entries served without fetching; stale entries refetched
- Forecast fetch failure → None even with a stale entry
- Threshold fetch failure → stale fallback (bounded by max_stale)
- Store failures degrade to cache misses
- Redis store graceful degradation
"""

from datetime import timedelta

import pytest

from flowwatch.cache.providers import ForecastCacheProvider, ThresholdCacheProvider
from flowwatch.cache.store import InMemoryStore, RedisStore, forecast_key, thresholds_key
from flowwatch.exceptions import UpstreamError
from tests.conftest import make_point, make_series, make_thresholds


class CountingFetcher:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = 0

    async def __call__(self, location_id: str):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


# ── Forecasts ─────────────────────────────────────────────────────────


class TestForecastProvider:
    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, clock):
        store = InMemoryStore()
        fetcher = CountingFetcher(make_series("loc-1", make_point(300)))
        provider = ForecastCacheProvider(store, fetcher, ttl=timedelta(minutes=30), clock=clock)

        series = await provider.get("loc-1")
        assert series is not None
        assert fetcher.calls == 1
        stored = await store.get(forecast_key("loc-1"))
        assert stored["last_updated"] == clock.now.isoformat()
        assert stored["value"]["location_id"] == "loc-1"

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_fetch(self, clock):
        fetcher = CountingFetcher(make_series("loc-1", make_point(300)))
        provider = ForecastCacheProvider(
            InMemoryStore(), fetcher, ttl=timedelta(minutes=30), clock=clock
        )
        first = await provider.get("loc-1")
        clock.advance(minutes=29)
        second = await provider.get("loc-1")
        assert fetcher.calls == 1
        assert second == first

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, clock):
        fetcher = CountingFetcher(make_series("loc-1", make_point(300)))
        provider = ForecastCacheProvider(
            InMemoryStore(), fetcher, ttl=timedelta(minutes=30), clock=clock
        )
        await provider.get("loc-1")
        clock.advance(minutes=30)
        await provider.get("loc-1")
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_returns_none_even_with_stale(self, clock):
        store = InMemoryStore()
        ok = ForecastCacheProvider(
            store, CountingFetcher(make_series("loc-1", make_point(300))),
            ttl=timedelta(minutes=30), clock=clock,
        )
        await ok.get("loc-1")
        clock.advance(hours=1)

        failing = ForecastCacheProvider(
            store, CountingFetcher(error=UpstreamError("forecast", "timeout")),
            ttl=timedelta(minutes=30), clock=clock,
        )
        assert await failing.get("loc-1") is None

    @pytest.mark.asyncio
    async def test_empty_forecast_not_cached(self, clock):
        store = InMemoryStore()
        provider = ForecastCacheProvider(
            store, CountingFetcher(make_series("loc-1")), ttl=timedelta(minutes=30), clock=clock
        )
        assert await provider.get("loc-1") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_locations_cached_separately(self, clock):
        fetcher = CountingFetcher(make_series("loc-1", make_point(300)))
        provider = ForecastCacheProvider(
            InMemoryStore(), fetcher, ttl=timedelta(minutes=30), clock=clock
        )
        await provider.get("loc-1")
        await provider.get("loc-2")
        assert fetcher.calls == 2


# ── Thresholds ────────────────────────────────────────────────────────


class TestThresholdProvider:
    @pytest.mark.asyncio
    async def test_fresh_for_seven_days(self, clock):
        fetcher = CountingFetcher(make_thresholds())
        provider = ThresholdCacheProvider(
            InMemoryStore(), fetcher, ttl=timedelta(days=7), clock=clock
        )
        await provider.get("loc-1")
        clock.advance(days=6, hours=23)
        cached = await provider.get("loc-1")
        assert fetcher.calls == 1
        assert cached.thresholds[100] == 800.0

    @pytest.mark.asyncio
    async def test_fetch_failure_serves_stale(self, clock):
        store = InMemoryStore()
        await ThresholdCacheProvider(
            store, CountingFetcher(make_thresholds()), ttl=timedelta(days=7), clock=clock
        ).get("loc-1")
        clock.advance(days=30)

        failing = CountingFetcher(error=UpstreamError("return_period", "HTTP 503", 503))
        provider = ThresholdCacheProvider(store, failing, ttl=timedelta(days=7), clock=clock)
        stale = await provider.get("loc-1")
        assert failing.calls == 1
        assert stale is not None
        assert stale.thresholds[5] == 250.0

    @pytest.mark.asyncio
    async def test_stale_fallback_bounded(self, clock):
        store = InMemoryStore()
        await ThresholdCacheProvider(
            store, CountingFetcher(make_thresholds()), ttl=timedelta(days=7), clock=clock
        ).get("loc-1")
        clock.advance(days=30)

        provider = ThresholdCacheProvider(
            store,
            CountingFetcher(error=UpstreamError("return_period", "timeout")),
            ttl=timedelta(days=7),
            max_stale=timedelta(days=14),
            clock=clock,
        )
        assert await provider.get("loc-1") is None

    @pytest.mark.asyncio
    async def test_failure_without_entry_returns_none(self, clock):
        provider = ThresholdCacheProvider(
            InMemoryStore(),
            CountingFetcher(error=UpstreamError("return_period", "timeout")),
            ttl=timedelta(days=7),
            clock=clock,
        )
        assert await provider.get("loc-1") is None

    @pytest.mark.asyncio
    async def test_no_thresholds_upstream(self, clock):
        provider = ThresholdCacheProvider(
            InMemoryStore(), CountingFetcher(None), ttl=timedelta(days=7), clock=clock
        )
        assert await provider.get("loc-1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [None, make_thresholds(thresholds={})])
    async def test_answer_without_years_serves_stale(self, clock, answer):
        store = InMemoryStore()
        await ThresholdCacheProvider(
            store, CountingFetcher(make_thresholds()), ttl=timedelta(days=7), clock=clock
        ).get("loc-1")
        clock.advance(days=8)

        empty = CountingFetcher(answer)
        provider = ThresholdCacheProvider(store, empty, ttl=timedelta(days=7), clock=clock)
        stale = await provider.get("loc-1")
        assert empty.calls == 1
        assert stale is not None
        assert stale.thresholds[100] == 800.0

        # The stale entry is not re-stamped as fresh
        raw = await store.get(thresholds_key("loc-1"))
        assert raw["last_updated"] == (clock.now - timedelta(days=8)).isoformat()

    @pytest.mark.asyncio
    async def test_int_keys_survive_json(self, clock):
        store = InMemoryStore()
        provider = ThresholdCacheProvider(
            store, CountingFetcher(make_thresholds()), ttl=timedelta(days=7), clock=clock
        )
        await provider.get("loc-1")
        raw = await store.get(thresholds_key("loc-1"))
        assert "100" in raw["value"]["thresholds"]
        cached = await provider.get("loc-1")
        assert set(cached.thresholds) == {2, 5, 10, 25, 50, 100}


# ── Store failures ────────────────────────────────────────────────────


class BrokenStore:
    async def get(self, key):
        raise ConnectionError("store down")

    async def set(self, key, value):
        raise ConnectionError("store down")


class TestStoreDegradation:
    @pytest.mark.asyncio
    async def test_broken_store_acts_as_miss(self, clock):
        fetcher = CountingFetcher(make_series("loc-1", make_point(300)))
        provider = ForecastCacheProvider(BrokenStore(), fetcher, ttl=timedelta(minutes=30), clock=clock)
        assert await provider.get("loc-1") is not None
        assert await provider.get("loc-1") is not None
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_redis_errors_swallowed(self):
        class FailingRedis:
            async def get(self, key):
                raise ConnectionError("redis down")

            async def set(self, key, value, ex=None):
                raise ConnectionError("redis down")

        store = RedisStore(client=FailingRedis())
        assert await store.get("k") is None
        await store.set("k", {"a": 1})

    @pytest.mark.asyncio
    async def test_redis_round_trip(self):
        class DictRedis:
            def __init__(self):
                self.data = {}

            async def get(self, key):
                return self.data.get(key)

            async def set(self, key, value, ex=None):
                self.data[key] = value

        store = RedisStore(client=DictRedis())
        await store.set("k", {"last_updated": "x", "value": {"n": 1}})
        assert await store.get("k") == {"last_updated": "x", "value": {"n": 1}}
