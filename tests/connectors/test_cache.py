"""Tests for the TTL cache."""

from __future__ import annotations

import asyncio

import pytest

from depin_telemetry.connectors.cache import MISS, CacheStore, make_cache_key
from depin_telemetry.connectors.errors import ConfigError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestCacheKey:
    def test_param_order_does_not_matter(self) -> None:
        a = make_cache_key("get", "/nodes", {"b": 2, "a": 1})
        b = make_cache_key("GET", "/nodes", {"a": 1, "b": 2})
        assert a == b
        assert a.startswith("GET:/nodes:")

    def test_different_params_differ(self) -> None:
        assert make_cache_key("GET", "/nodes", {"a": 1}) != make_cache_key("GET", "/nodes", {"a": 2})
        assert make_cache_key("GET", "/nodes") != make_cache_key("POST", "/nodes")

    def test_none_params_same_as_empty(self) -> None:
        assert make_cache_key("GET", "/x", None) == make_cache_key("GET", "/x", {})


class TestMiss:
    def test_miss_is_singleton_and_falsy(self) -> None:
        assert not MISS
        assert repr(MISS) == "MISS"
        assert type(MISS)() is MISS


class TestExpiry:
    """Entries expire at an absolute time measured by the injected clock."""

    def test_hit_before_ttl_miss_after(self) -> None:
        clock = FakeClock()
        cache = CacheStore(default_ttl_s=60, _time_fn=clock)
        cache.set("k", {"v": 1})

        clock.now = 59.9
        assert cache.get("k") == {"v": 1}

        clock.now = 61.0
        assert cache.get("k") is MISS
        assert len(cache) == 0

    def test_cached_none_is_a_hit(self) -> None:
        cache = CacheStore()
        cache.set("k", None)
        assert cache.get("k") is None
        assert cache.stats.hits == 1

    def test_per_entry_ttl(self) -> None:
        clock = FakeClock()
        cache = CacheStore(default_ttl_s=300, _time_fn=clock)
        cache.set("short", 1, ttl_s=5)
        cache.set("long", 2)

        clock.now = 10
        assert cache.get("short") is MISS
        assert cache.get("long") == 2

    def test_non_positive_ttl_skips_store(self) -> None:
        cache = CacheStore()
        cache.set("k", 1, ttl_s=0)
        assert cache.get("k") is MISS
        assert cache.stats.sets == 0

    def test_purge_expired(self) -> None:
        clock = FakeClock()
        cache = CacheStore(default_ttl_s=10, _time_fn=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl_s=100)

        clock.now = 20
        assert cache.purge_expired() == 1
        assert "a" not in cache
        assert "b" in cache


class TestCapacity:
    def test_evicts_entry_closest_to_expiry(self) -> None:
        clock = FakeClock()
        cache = CacheStore(default_ttl_s=100, max_entries=2, _time_fn=clock)
        cache.set("soon", 1, ttl_s=10)
        cache.set("later", 2, ttl_s=50)
        cache.set("new", 3)

        assert "soon" not in cache
        assert "later" in cache
        assert "new" in cache
        assert cache.stats.evictions == 1

    def test_overwrite_does_not_evict(self) -> None:
        cache = CacheStore(max_entries=1)
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k") == 2
        assert cache.stats.evictions == 0

    @pytest.mark.parametrize("kwargs", [{"default_ttl_s": 0}, {"max_entries": 0}])
    def test_invalid_config(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ConfigError):
            CacheStore(**kwargs)


class TestStats:
    def test_hit_rate(self) -> None:
        cache = CacheStore()
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("other")
        assert cache.stats.hits == 2
        assert cache.stats.misses == 1
        assert cache.stats.hit_rate == pytest.approx(2 / 3)

    def test_delete_and_clear(self) -> None:
        cache = CacheStore()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0


class TestEviction:
    @pytest.mark.asyncio
    async def test_background_sweep_and_dispose(self) -> None:
        clock = FakeClock()
        cache = CacheStore(default_ttl_s=1, _time_fn=clock)
        cache.set("a", 1)
        cache.start_eviction(0.01)
        assert cache.eviction_running

        clock.now = 5
        await asyncio.sleep(0.05)
        assert len(cache) == 0

        cache.set("b", 2)
        await cache.dispose()
        assert not cache.eviction_running
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_start_eviction_is_idempotent(self) -> None:
        cache = CacheStore()
        cache.start_eviction(10)
        task = cache._eviction_task
        cache.start_eviction(10)
        assert cache._eviction_task is task
        await cache.dispose()
