"""
Unit tests for ResponseCache.
"""
from unittest.mock import AsyncMock

import pytest

from polycopy.core.cache import CacheKeys, ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestResponseCache:
    @pytest.mark.asyncio
    async def test_hit_within_ttl(self, clock):
        cache = ResponseCache(clock=clock)
        producer = AsyncMock(return_value=[1, 2])

        assert await cache.get_or_fetch("k", 10, producer) == [1, 2]
        clock.now = 9.9
        assert await cache.get_or_fetch("k", 10, producer) == [1, 2]

        assert producer.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, clock):
        cache = ResponseCache(clock=clock)
        producer = AsyncMock(side_effect=["old", "new"])

        await cache.get_or_fetch("k", 10, producer)
        clock.now = 10.0

        assert await cache.get_or_fetch("k", 10, producer) == "new"

    @pytest.mark.asyncio
    async def test_producer_error_is_not_cached(self, clock):
        cache = ResponseCache(clock=clock)
        producer = AsyncMock(side_effect=[ConnectionError("down"), "ok"])

        with pytest.raises(ConnectionError):
            await cache.get_or_fetch("k", 10, producer)

        assert len(cache) == 0
        assert await cache.get_or_fetch("k", 10, producer) == "ok"

    @pytest.mark.asyncio
    async def test_invalidation(self):
        cache = ResponseCache()
        for key in (CacheKeys.MY_POSITIONS, CacheKeys.order_book("1"), CacheKeys.order_book("2")):
            await cache.get_or_fetch(key, 60, AsyncMock(return_value=None))

        cache.invalidate(CacheKeys.MY_POSITIONS)
        cache.invalidate("not-there")
        assert len(cache) == 2

        cache.invalidate_prefix(CacheKeys.ORDER_BOOK_PREFIX)
        assert cache.stats() == {"size": 0, "keys": []}


class TestCacheKeys:
    def test_trader_positions_key_is_lowercased(self):
        assert CacheKeys.trader_positions("0xABC") == "trader_positions_0xabc"

    def test_order_book_key(self):
        assert CacheKeys.order_book("123") == "order_book_123"
