"""Polymarket CLOB client for order books and sell execution.

This client wraps the synchronous py-clob-client library with asyncio
support, running SDK calls in a thread pool. Order-submission failures are
decoded here into OrderError so call sites never inspect raw responses.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from polycopy.core.cache import CacheKeys, ResponseCache
from polycopy.core.config import PolycopySettings
from polycopy.core.errors import OrderError, TransportFailure
from polycopy.domain.models import OrderBook, OrderBookLevel, to_decimal

log = structlog.get_logger()

POLYGON_CHAIN_ID = 137

# USDC has 6 decimals
USDC_UNIT = Decimal("1000000")

# Retry configuration for reads
RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10


@dataclass(frozen=True)
class OrderSubmission:
    """Result of posting one order."""

    success: bool
    order_id: str = ""
    error: Optional[OrderError] = None


class CLOBClient:
    """Async client for the Polymarket CLOB (Central Limit Order Book).

    Provides:
    - Order book reads (optionally cached)
    - Fill-or-kill market sells
    - Balance/allowance refresh and USDC balance reads
    """

    def __init__(
        self,
        settings: PolycopySettings,
        cache: Optional[ResponseCache] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """Initialize the CLOB client.

        Args:
            settings: Connection settings including the signing identity.
            cache: Shared response cache for order book and balance reads.
            executor: Optional thread pool for SDK calls.
        """
        self._settings = settings
        self._cache = cache if cache is not None else ResponseCache()
        self._executor = executor or ThreadPoolExecutor(max_workers=4)
        self._client: Any = None  # py-clob-client ClobClient instance
        self._connected = False
        self._log = log.bind(component="clob_client")

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """Create the underlying SDK client and API credentials."""
        if self._connected:
            return

        from py_clob_client.client import ClobClient
        from py_clob_client.clob_types import ApiCreds

        settings = self._settings
        creds = (
            ApiCreds(
                api_key=settings.api_key,
                api_secret=settings.api_secret,
                api_passphrase=settings.api_passphrase,
            )
            if settings.api_key
            else None
        )

        def create_client():
            client = ClobClient(
                host=settings.clob_url.rstrip("/"),
                key=settings.private_key,
                chain_id=POLYGON_CHAIN_ID,
                signature_type=settings.signature_type,
                funder=settings.proxy_wallet or None,
                creds=creds,
            )
            if creds is None:
                client.set_api_creds(client.create_or_derive_api_creds())
            return client

        try:
            self._client = await self._run_sync(create_client)
        except Exception as e:
            raise TransportFailure("Failed to initialize CLOB client", cause=e)

        self._connected = True
        self._log.info(
            "clob_client_connected",
            url=settings.clob_url,
            signature_type=settings.signature_type,
        )

    async def close(self) -> None:
        self._client = None
        self._connected = False
        self._log.info("clob_client_closed")

    async def __aenter__(self) -> "CLOBClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_connected(self):
        if not self.is_connected:
            raise TransportFailure("CLOB client not connected. Call connect() first.")
        return self._client

    async def _run_sync(self, func, *args, **kwargs):
        """Run a synchronous function in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    # =========================================================================
    # Order book
    # =========================================================================

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type((ConnectionError, TimeoutError)),
        reraise=True,
    )
    async def _fetch_order_book(self, asset: str) -> OrderBook:
        client = self._ensure_connected()
        raw_book = await self._run_sync(client.get_order_book, asset)

        bids = self._parse_book_levels(
            raw_book.get("bids")
            if isinstance(raw_book, dict)
            else getattr(raw_book, "bids", [])
        )
        asks = self._parse_book_levels(
            raw_book.get("asks")
            if isinstance(raw_book, dict)
            else getattr(raw_book, "asks", [])
        )
        return OrderBook(asset=asset, bids=tuple(bids), asks=tuple(asks))

    async def get_order_book(self, asset: str, use_cache: bool = False) -> OrderBook:
        """Get the order book for an asset.

        Args:
            asset: Token ID.
            use_cache: Serve a copy up to order_book_ttl_seconds old.
        """
        if not use_cache:
            return await self._fetch_order_book(asset)
        return await self._cache.get_or_fetch(
            CacheKeys.order_book(asset),
            self._settings.order_book_ttl_seconds,
            lambda: self._fetch_order_book(asset),
        )

    def _parse_book_levels(self, levels) -> list[OrderBookLevel]:
        """Parse order book levels from API response, keeping their order."""
        if not levels:
            return []

        result = []
        for level in levels:
            if isinstance(level, dict):
                price = to_decimal(level.get("price"))
                size = to_decimal(level.get("size"))
            else:
                price = to_decimal(getattr(level, "price", 0))
                size = to_decimal(getattr(level, "size", 0))

            if size > 0:
                result.append(OrderBookLevel(price=price, size=size))

        return result

    # =========================================================================
    # Balance
    # =========================================================================

    async def update_balance_allowance(self, asset: str) -> None:
        """Ask the venue to refresh its cached balance for a conditional token."""
        from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

        client = self._ensure_connected()
        params = BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=asset)
        await self._run_sync(client.update_balance_allowance, params=params)

    async def get_balance(self) -> Decimal:
        """Get the USDC collateral balance (cached)."""
        from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

        client = self._ensure_connected()

        async def fetch() -> Decimal:
            params = BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
            raw = await self._run_sync(client.get_balance_allowance, params=params)
            return to_decimal(raw.get("balance")) / USDC_UNIT

        return await self._cache.get_or_fetch(
            CacheKeys.MY_BALANCE, self._settings.balance_ttl_seconds, fetch
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def submit_market_sell(
        self,
        asset: str,
        amount: Decimal,
        price: Decimal,
    ) -> OrderSubmission:
        """Sign and post a fill-or-kill market sell.

        Never raises for exchange or transport failures; they come back as
        an unsuccessful OrderSubmission with a decoded OrderError.
        """
        from py_clob_client.clob_types import MarketOrderArgs, OrderType
        from py_clob_client.order_builder.constants import SELL

        client = self._ensure_connected()
        order_args = MarketOrderArgs(
            token_id=asset,
            amount=float(amount),
            side=SELL,
            price=float(price),
        )

        try:
            signed_order = await self._run_sync(client.create_market_order, order_args)
            response = await self._run_sync(client.post_order, signed_order, OrderType.FOK)
        except Exception as e:
            self._log.warning(
                "order_submit_error",
                asset=asset,
                amount=str(amount),
                price=str(price),
                error=str(e),
            )
            return OrderSubmission(success=False, error=OrderError.from_exception(e))

        if isinstance(response, dict) and response.get("success") is True:
            order_id = response.get("orderID", response.get("id", ""))
            return OrderSubmission(success=True, order_id=order_id)

        error = OrderError.from_response(response)
        self._log.warning(
            "order_rejected",
            asset=asset,
            amount=str(amount),
            price=str(price),
            code=error.code.value,
            error=error.raw_text,
        )
        return OrderSubmission(success=False, error=error)
