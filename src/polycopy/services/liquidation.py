"""Position Liquidation Engine.

Sells all or part of a position by walking the live order book: each
attempt takes the best bid, submits a fill-or-kill sell for at most that
level's size, and repeats until the requested amount is gone, the book is
empty or the retry limit is hit. Partial progress is always reported.

Runs are strictly sequential. close_all() liquidates positions one at a
time with a fixed delay between them.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import structlog

from polycopy.core.cache import CacheKeys, ResponseCache
from polycopy.core.errors import ErrorKind, OrderError, PolycopyError
from polycopy.core.events import invoke_listener
from polycopy.domain.models import (
    DUST_THRESHOLD,
    BulkCloseSummary,
    CloseDetail,
    LiquidationJob,
    LiquidationResult,
    Position,
)
from polycopy.integrations.clob import CLOBClient, OrderSubmission
from polycopy.integrations.data_api import DataApiClient

log = structlog.get_logger()

RETRY_BACKOFF_SECONDS = 1.0
DEFAULT_CLOSE_ALL_DELAY = 1.0


@dataclass
class LiquidationProgress:
    """Optional close-all progress hooks; each may be sync or async."""

    on_init: Optional[Callable[[int], Any]] = None
    on_closing: Optional[Callable[[int, Position], Any]] = None
    on_closed: Optional[Callable[[int, Position, LiquidationResult], Any]] = None
    on_complete: Optional[Callable[[BulkCloseSummary], Any]] = None


class LiquidationEngine:
    """Sells the operator's positions into the order book."""

    def __init__(
        self,
        data_api: DataApiClient,
        clob: CLOBClient,
        wallet: str,
        retry_limit: int = 3,
        close_all_delay: float = DEFAULT_CLOSE_ALL_DELAY,
        cache: Optional[ResponseCache] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the engine.

        Args:
            data_api: Positions source.
            clob: Order book and order submission client.
            wallet: Address whose positions are sold (the proxy wallet).
            retry_limit: Consecutive failed attempts allowed per run.
            close_all_delay: Seconds between positions in close_all().
            cache: Cache to invalidate after fills; defaults to the data
                API client's cache.
            sleep: Awaitable sleep, replaced in tests.
        """
        self._data_api = data_api
        self._clob = clob
        self._wallet = wallet
        self._retry_limit = retry_limit
        self._close_all_delay = close_all_delay
        self._cache = cache if cache is not None else data_api.cache
        self._sleep = sleep
        self._log = log.bind(component="liquidation_engine")

    async def get_positions(self) -> list[Position]:
        """Fresh positions for the operator wallet."""
        return await self._data_api.get_positions(
            self._wallet, fresh=True, cache_key=CacheKeys.MY_POSITIONS
        )

    async def liquidate(self, asset: str, percentage: Decimal) -> LiquidationResult:
        """Sell percentage (0-100) of the position in asset.

        Never raises for per-run failures; they are reported on the result.
        """
        percentage = Decimal(str(percentage))
        if percentage < 0 or percentage > 100:
            return LiquidationResult.failure(
                ErrorKind.INVALID_ARGUMENT, "Percentage must be between 0 and 100"
            )

        try:
            positions = await self.get_positions()
        except PolycopyError as e:
            self._log.error("liquidation_positions_failed", asset=asset, error=str(e))
            return LiquidationResult.failure(ErrorKind.TRANSPORT_FAILURE, str(e))

        position = next((p for p in positions if p.asset == asset), None)
        if position is None:
            return LiquidationResult.failure(ErrorKind.NOT_FOUND, "Position not found")

        sell_size = position.size * percentage / 100
        if sell_size < DUST_THRESHOLD:
            return LiquidationResult.failure(
                ErrorKind.BELOW_MINIMUM,
                f"Sell size below minimum ({DUST_THRESHOLD} tokens)",
                remaining=position.size,
            )

        self._log.info(
            "liquidation_started",
            asset=asset,
            title=position.display_name,
            position_size=str(position.size),
            sell_size=str(sell_size),
            percentage=str(percentage),
        )

        try:
            await self._clob.update_balance_allowance(asset)
        except Exception as e:
            self._log.warning("balance_refresh_failed", asset=asset, error=str(e))

        job = LiquidationJob(asset=asset, requested=sell_size)
        result = await self._run(job)

        if job.sold > 0:
            self._cache.invalidate(CacheKeys.MY_POSITIONS)
            self._cache.invalidate(CacheKeys.order_book(asset))

        self._log.info(
            "liquidation_finished",
            asset=asset,
            success=result.success,
            sold=str(result.sold),
            remaining=str(result.remaining),
            proceeds=str(result.proceeds),
            error=result.error,
        )
        return result

    async def _run(self, job: LiquidationJob) -> LiquidationResult:
        while job.can_attempt(self._retry_limit):
            try:
                book = await self._clob.get_order_book(job.asset)
            except Exception as e:
                self._log.warning(
                    "liquidation_book_error",
                    asset=job.asset,
                    attempt=job.retries + 1,
                    error=str(e),
                )
                await self._record_failure(job)
                continue

            best = book.best_bid
            if best is None:
                return LiquidationResult.from_job(
                    job,
                    error="No bids available in order book",
                    error_kind=ErrorKind.NO_LIQUIDITY,
                )

            amount = min(job.remaining, best.size)
            try:
                submission = await self._clob.submit_market_sell(job.asset, amount, best.price)
            except Exception as e:
                submission = OrderSubmission(success=False, error=OrderError.from_exception(e))

            if submission.success:
                job.record_fill(amount, best.price)
                self._log.info(
                    "liquidation_fill",
                    asset=job.asset,
                    amount=str(amount),
                    price=str(best.price),
                    remaining=str(job.remaining),
                )
            else:
                self._log.warning(
                    "liquidation_attempt_failed",
                    asset=job.asset,
                    attempt=job.retries + 1,
                    retry_limit=self._retry_limit,
                    error=str(submission.error),
                )
                await self._record_failure(job)

        if job.remaining > DUST_THRESHOLD:
            return LiquidationResult.from_job(
                job,
                error=f"Could not sell all tokens. {job.remaining:.4f} remaining.",
                error_kind=ErrorKind.RETRIES_EXHAUSTED,
            )
        return LiquidationResult.from_job(job)

    async def _record_failure(self, job: LiquidationJob) -> None:
        job.record_failure()
        if job.retries < self._retry_limit:
            await self._sleep(RETRY_BACKOFF_SECONDS)

    async def close_all(self, progress: Optional[LiquidationProgress] = None) -> BulkCloseSummary:
        """Liquidate every open position at 100 %, one at a time."""
        progress = progress or LiquidationProgress()

        try:
            positions = await self.get_positions()
        except PolycopyError as e:
            self._log.error("close_all_positions_failed", error=str(e))
            summary = BulkCloseSummary(message=f"Failed to close all positions: {e}")
            await invoke_listener(progress.on_complete, summary)
            return summary

        if not positions:
            summary = BulkCloseSummary(success=True, message="No positions to close")
            await invoke_listener(progress.on_init, 0)
            await invoke_listener(progress.on_complete, summary)
            return summary

        summary = BulkCloseSummary()
        await invoke_listener(progress.on_init, len(positions))
        self._log.info("close_all_started", count=len(positions))

        for index, position in enumerate(positions):
            await invoke_listener(progress.on_closing, index, position)

            result = await self.liquidate(position.asset, Decimal("100"))
            if result.success:
                summary.closed_count += 1
                summary.total_value += result.proceeds
            else:
                summary.failed_count += 1

            summary.details.append(
                CloseDetail(
                    asset=position.asset,
                    title=position.title,
                    success=result.success,
                    sold=result.sold,
                    value=result.proceeds,
                    error=None if result.success else result.error,
                )
            )
            await invoke_listener(progress.on_closed, index, position, result)

            if index < len(positions) - 1:
                await self._sleep(self._close_all_delay)

        summary.success = summary.closed_count > 0
        summary.message = (
            f"Closed {summary.closed_count}/{len(positions)} positions "
            f"for ${summary.total_value:.2f}"
        )
        self._log.info(
            "close_all_finished",
            closed=summary.closed_count,
            failed=summary.failed_count,
            total_value=str(summary.total_value),
        )
        await invoke_listener(progress.on_complete, summary)
        return summary
