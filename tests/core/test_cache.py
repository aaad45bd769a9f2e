"""
Tests for hinge.core.cache.

Covers:
- get/set/has/delete with TTL expiry on an injected clock
- FIFO eviction at capacity
- Single-flight get_or_set, including failing factories
- The background sweep and destroy()
- create_cache_key determinism
"""

import asyncio

import pytest

from hinge.core.cache import TTLCache, create_cache_key


class TestTTLCacheBasics:
    """Test plain cache operations."""

    def test_set_and_get(self, clock):
        """Stored values are returned."""
        cache = TTLCache(clock=clock, cleanup_interval_ms=None)
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}
        assert cache.has("k")
        assert "k" in cache

    def test_missing_key_returns_default(self, clock):
        """Missing keys return the default."""
        cache = TTLCache(clock=clock, cleanup_interval_ms=None)
        assert cache.get("nope") is None
        assert cache.get("nope", 42) == 42

    def test_ttl_boundary(self, clock):
        """An entry with TTL 1000 is present at 999 ms and gone at 1001 ms."""
        cache = TTLCache(clock=clock, cleanup_interval_ms=None)
        cache.set("k", "v", ttl_ms=1000)

        clock.advance(999)
        assert cache.get("k") == "v"

        clock.advance(2)
        assert cache.get("k") is None
        assert not cache.has("k")

    def test_default_ttl_applies(self, clock):
        """Entries without a TTL use default_ttl_ms."""
        cache = TTLCache(default_ttl_ms=50, clock=clock, cleanup_interval_ms=None)
        cache.set("k", "v")
        clock.advance(51)
        assert cache.get("k") is None

    def test_delete(self, clock):
        """Delete reports whether the key existed."""
        cache = TTLCache(clock=clock, cleanup_interval_ms=None)
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False

    def test_cleanup_removes_expired(self, clock):
        """cleanup() drops expired entries and returns the count."""
        cache = TTLCache(clock=clock, cleanup_interval_ms=None)
        cache.set("short", 1, ttl_ms=10)
        cache.set("long", 2, ttl_ms=10_000)
        clock.advance(11)
        assert cache.cleanup() == 1
        assert cache.keys() == ["long"]

    def test_invalid_max_size(self):
        """max_size below one is rejected."""
        with pytest.raises(ValueError):
            TTLCache(max_size=0)


class TestTTLCacheEviction:
    """Test FIFO eviction."""

    def test_oldest_key_evicted_at_capacity(self, clock):
        """Inserting a new key at capacity evicts the oldest one."""
        cache = TTLCache(max_size=2, clock=clock, cleanup_interval_ms=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.size == 2
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_reads_do_not_reorder(self, clock):
        """Reading a key does not protect it from eviction."""
        cache = TTLCache(max_size=2, clock=clock, cleanup_interval_ms=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert not cache.has("a")

    def test_overwrite_does_not_evict(self, clock):
        """Updating an existing key at capacity keeps the other keys."""
        cache = TTLCache(max_size=2, clock=clock, cleanup_interval_ms=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert cache.get("a") == 10
        assert cache.get("b") == 2


class TestGetOrSet:
    """Test single-flight get_or_set."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_factory_call(self):
        """50 concurrent callers on a missing key run the factory once."""
        cache = TTLCache(cleanup_interval_ms=None)
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "value"

        results = await asyncio.gather(*(cache.get_or_set("k", factory) for _ in range(50)))

        assert calls == 1
        assert results == ["value"] * 50
        assert cache.get("k") == "value"
        assert not cache.is_pending("k")

    @pytest.mark.asyncio
    async def test_cached_value_skips_factory(self):
        """A present value is returned without calling the factory."""
        cache = TTLCache(cleanup_interval_ms=None)
        cache.set("k", "cached")

        async def factory():
            raise AssertionError("factory should not run")

        assert await cache.get_or_set("k", factory) == "cached"

    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_not_cached(self):
        """A failing factory raises for every waiter and the next call retries."""
        cache = TTLCache(cleanup_interval_ms=None)

        async def boom():
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        outcomes = await asyncio.gather(
            cache.get_or_set("k", boom),
            cache.get_or_set("k", boom),
            return_exceptions=True,
        )
        assert all(isinstance(o, RuntimeError) for o in outcomes)
        assert not cache.has("k")
        assert not cache.is_pending("k")

        async def ok():
            return 7

        assert await cache.get_or_set("k", ok) == 7

    @pytest.mark.asyncio
    async def test_sweeper_removes_expired_entries(self, clock):
        """The background sweep drops expired entries without any read."""
        cache = TTLCache(cleanup_interval_ms=10, clock=clock)
        cache.set("short", 1, ttl_ms=5)
        cache.set("long", 2, ttl_ms=10_000)
        clock.advance(6)
        assert cache.size == 2

        await asyncio.sleep(0.05)

        assert cache.keys() == ["long"]
        cache.destroy()

    @pytest.mark.asyncio
    async def test_destroy_stops_sweeper(self):
        """destroy() cancels the background sweeper and clears entries."""
        cache = TTLCache(cleanup_interval_ms=10)
        cache.set("k", "v")
        assert cache._sweeper is not None
        cache.destroy()
        assert cache._sweeper is None
        assert cache.size == 0


class TestCreateCacheKey:
    """Test cache key construction."""

    def test_sorted_params(self):
        """Params are sorted by key."""
        assert create_cache_key("price", {"symbol": "eth", "chain": 1}) == "price:chain=1&symbol=eth"

    def test_none_values_skipped(self):
        """None values are left out."""
        assert create_cache_key("price", {"symbol": "eth", "chain": None}) == "price:symbol=eth"

    def test_prefix_only(self):
        """No params gives the bare prefix."""
        assert create_cache_key("price") == "price"
        assert create_cache_key("price", {"a": None}) == "price"
