"""Polymarket data API client for wallet positions.

The data API is a public, unauthenticated HTTP API. It is separate from the
CLOB API which handles order execution.
"""

from typing import Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from polycopy.core.cache import CacheKeys, ResponseCache
from polycopy.core.errors import TransportFailure
from polycopy.domain.models import ZERO_THRESHOLD, Position

log = structlog.get_logger()

# Retry configuration for transient errors
RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10


class DataApiClient:
    """Async HTTP client for the positions read API.

    Reads go through a ResponseCache unless the caller asks for a fresh
    copy; the engines always read fresh before trading.
    """

    def __init__(
        self,
        base_url: str = "https://data-api.polymarket.com",
        cache: Optional[ResponseCache] = None,
        positions_ttl: float = 10.0,
        timeout: float = 30.0,
    ):
        """Initialize the data API client.

        Args:
            base_url: Data API base URL.
            cache: Shared response cache.
            positions_ttl: Seconds a positions list stays cached.
            timeout: HTTP request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._cache = cache if cache is not None else ResponseCache()
        self._positions_ttl = positions_ttl
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._log = log.bind(component="data_api")

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
        )
        self._log.info("data_api_connected", base_url=self._base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._log.info("data_api_closed")

    async def __aenter__(self) -> "DataApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            raise TransportFailure("Data API client not connected. Call connect() first.")
        return self._client

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _get_positions_raw(self, address: str) -> list[dict]:
        client = self._ensure_connected()
        response = await client.get("/positions", params={"user": address})
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, list) else []

    async def fetch_positions(self, address: str) -> list[Position]:
        """Fetch a wallet's positions, bypassing the cache.

        Positions at or below the zero-dust threshold are dropped.

        Raises:
            TransportFailure: On non-2xx responses, undecodable bodies or
                network errors.
        """
        try:
            raw = await self._get_positions_raw(address)
        except httpx.HTTPStatusError as e:
            raise TransportFailure(
                f"Failed to fetch positions: HTTP {e.response.status_code}", cause=e
            )
        except httpx.HTTPError as e:
            raise TransportFailure("Failed to fetch positions", cause=e)
        except ValueError as e:
            raise TransportFailure("Positions response is not valid JSON", cause=e)

        positions = [Position.from_api(item) for item in raw if isinstance(item, dict)]
        return [p for p in positions if p.size > ZERO_THRESHOLD]

    async def get_positions(
        self,
        address: str,
        fresh: bool = False,
        cache_key: Optional[str] = None,
    ) -> list[Position]:
        """Fetch a wallet's positions through the cache.

        Args:
            address: Wallet address.
            fresh: Drop any cached copy first.
            cache_key: Override the per-address key (the operator's own
                wallet uses CacheKeys.MY_POSITIONS).
        """
        key = cache_key or CacheKeys.trader_positions(address)
        if fresh:
            self._cache.invalidate(key)
        return await self._cache.get_or_fetch(
            key, self._positions_ttl, lambda: self.fetch_positions(address)
        )
