"""Polling fallback for the trade feed.

When the live monitor gives up, the poller re-reads bot-executed trades
from the observation store every few seconds and emits the ones newer than
its watermark.
"""

import asyncio
import time
from typing import Callable, Optional, Sequence

import structlog

from polycopy.core.bot_state import BotState
from polycopy.core.events import TRADE_EVENT, EventEmitter
from polycopy.domain.models import TradeEvent, TradeObservation
from polycopy.services.observation_store import ObservationStore

log = structlog.get_logger()

DEFAULT_POLL_INTERVAL = 2.0
LOOKBACK_SECONDS = 24 * 3600
PAGE_SIZE = 10


class TradePoller:
    """Periodic store reader that emits "trade" events.

    The watermark starts 24 hours in the past and only moves forward.
    """

    def __init__(
        self,
        store: ObservationStore,
        emitter: EventEmitter,
        addresses: Sequence[str],
        bot_state: Optional[BotState] = None,
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._emitter = emitter
        self._addresses = [a.lower() for a in addresses]
        self._bot_state = bot_state
        self._interval = interval_seconds
        self._watermark = int(clock()) - LOOKBACK_SECONDS
        self._task: Optional[asyncio.Task] = None
        self._log = log.bind(component="trade_poller")

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, _payload=None) -> None:
        """Start polling. Extra argument lets this subscribe to an event."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        self._log.info(
            "poller_started",
            interval=self._interval,
            addresses=len(self._addresses),
            watermark=self._watermark,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._log.info("poller_stopped")

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)

    async def poll_once(self) -> list[TradeObservation]:
        """Run one poll cycle and return the observations emitted.

        Errors are logged; the cycle yields nothing and the watermark stays.
        """
        try:
            trades = await self._collect()
        except Exception as e:
            self._log.error("poll_cycle_error", error=str(e))
            return []

        trades.sort(key=lambda t: t.timestamp, reverse=True)

        emitted = []
        paused = self._bot_state.is_paused if self._bot_state else False
        for trade in trades:
            if trade.timestamp > self._watermark:
                await self._emitter.emit(
                    TRADE_EVENT, TradeEvent(observation=trade, source="poll", paused=paused)
                )
                emitted.append(trade)

        if trades:
            self._watermark = max(self._watermark, max(t.timestamp for t in trades))

        if emitted:
            self._log.info("poll_trades_emitted", count=len(emitted), watermark=self._watermark)
        return emitted

    async def _collect(self) -> list[TradeObservation]:
        trades: list[TradeObservation] = []
        for address in self._addresses:
            if not await self._store.has_collection(address):
                continue
            trades.extend(await self._read_all_since(address))
        return trades

    async def _read_all_since(self, address: str) -> list[TradeObservation]:
        # Oldest first in pages, so nothing below the next watermark is left unread.
        trades: list[TradeObservation] = []
        while True:
            page = await self._store.find_bot_trades_since(
                address,
                since=self._watermark,
                limit=PAGE_SIZE,
                offset=len(trades),
                oldest_first=True,
            )
            trades.extend(page)
            if len(page) < PAGE_SIZE:
                return trades
