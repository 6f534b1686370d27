"""In-memory TTL cache for external reads.

Used for the positions list, the balance and per-asset order books to avoid
hammering the data API when several callers ask at once. There is no size
bound: key cardinality is small (one positions key, one balance key, one
entry per order book).
"""

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import structlog

log = structlog.get_logger()

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and the monotonic time it stops being valid."""

    value: V
    expires_at: float


class CacheKeys:
    """Cache key builders."""

    MY_POSITIONS = "my_positions"
    MY_BALANCE = "my_balance"
    ORDER_BOOK_PREFIX = "order_book_"

    @staticmethod
    def trader_positions(address: str) -> str:
        return f"trader_positions_{address.lower()}"

    @staticmethod
    def order_book(asset: str) -> str:
        return f"{CacheKeys.ORDER_BOOK_PREFIX}{asset}"


class ResponseCache(Generic[V]):
    """Memoize async producer results for a fixed time-to-live.

    Usage:
        cache: ResponseCache[list[Position]] = ResponseCache()
        positions = await cache.get_or_fetch(
            CacheKeys.MY_POSITIONS, 10.0, client.fetch_positions
        )
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        """Initialize the cache.

        Args:
            clock: Time source in seconds; defaults to time.monotonic.
        """
        self._entries: dict[str, CacheEntry[V]] = {}
        self._clock = clock or time.monotonic

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: float,
        producer: Callable[[], Awaitable[V]],
    ) -> V:
        """Return the cached value for key, or produce and store a fresh one.

        Producer exceptions propagate and nothing is stored.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry.value

        value = await producer()
        self._entries[key] = CacheEntry(
            value=value, expires_at=self._clock() + ttl_seconds
        )
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
        log.debug("cache_cleared")

    def stats(self) -> dict:
        """Get cache stats for debugging."""
        return {"size": len(self._entries), "keys": list(self._entries)}

    def __len__(self) -> int:
        return len(self._entries)
