"""
polycopy application wiring.

Builds every component from settings and connects them:
settings -> data API (+ cache) -> CLOB -> CTF -> observation store ->
monitor + polling fallback -> liquidation and redemption engines.

The poller is subscribed to the monitor's "fallback" event, so polling
starts only after the streaming monitor gives up.
"""

import asyncio
from decimal import Decimal
from typing import Optional

import structlog

from polycopy.core.bot_state import BotState
from polycopy.core.cache import ResponseCache
from polycopy.core.config import PolycopySettings
from polycopy.core.events import FALLBACK_EVENT, EventEmitter
from polycopy.domain.models import Position, TradeObservation
from polycopy.integrations.clob import CLOBClient
from polycopy.integrations.ctf import CTFClient
from polycopy.integrations.data_api import DataApiClient
from polycopy.services.liquidation import LiquidationEngine
from polycopy.services.observation_store import ObservationStore, clamp_limit
from polycopy.services.redemption import RedemptionEngine
from polycopy.services.trade_monitor import TradeMonitor
from polycopy.services.trade_poller import TradePoller


class PolycopyApp:
    """Owns component instances and their connect/close order.

    Usage:
        app = PolycopyApp(settings)
        await app.connect(trading=True)
        result = await app.liquidation.liquidate(asset, Decimal("50"))
        await app.close()
    """

    def __init__(self, settings: PolycopySettings, bot_state: Optional[BotState] = None):
        self._settings = settings
        self._log = structlog.get_logger("polycopy.app")

        self.bot_state = bot_state or BotState()
        self.cache: ResponseCache = ResponseCache()
        self.emitter = EventEmitter()

        self.data_api = DataApiClient(
            base_url=settings.data_api_url,
            cache=self.cache,
            positions_ttl=settings.positions_ttl_seconds,
        )
        self.clob = CLOBClient(settings, cache=self.cache)
        self.ctf = CTFClient(
            rpc_url=settings.polygon_rpc_url,
            private_key=settings.private_key,
            gas_price_multiplier_pct=settings.gas_price_multiplier_pct,
            gas_limit=settings.redemption_gas_limit,
        )
        self.store = ObservationStore(settings.database_path)

        self.monitor = TradeMonitor(
            addresses=settings.user_addresses,
            store=self.store,
            emitter=self.emitter,
            bot_state=self.bot_state,
            url=settings.rtds_url,
            too_old_hours=settings.too_old_hours,
            max_reconnect_attempts=settings.ws_reconnect_attempts,
            reconnect_delay_seconds=settings.ws_reconnect_delay_seconds,
        )
        self.poller = TradePoller(
            store=self.store,
            emitter=self.emitter,
            addresses=settings.user_addresses,
            bot_state=self.bot_state,
            interval_seconds=settings.poll_interval_seconds,
        )
        self.emitter.on(FALLBACK_EVENT, self.poller.start)

        self.liquidation = LiquidationEngine(
            data_api=self.data_api,
            clob=self.clob,
            wallet=settings.proxy_wallet,
            retry_limit=settings.retry_limit,
            close_all_delay=settings.close_all_delay_seconds,
            cache=self.cache,
        )
        self.redemption = RedemptionEngine(
            data_api=self.data_api,
            ctf=self.ctf,
            wallet=settings.proxy_wallet,
            batch_delay=settings.redemption_delay_seconds,
        )

    @property
    def settings(self) -> PolycopySettings:
        return self._settings

    async def connect(
        self,
        trading: bool = False,
        chain: bool = False,
        store: bool = False,
    ) -> None:
        """Connect the clients a command needs. The data API is always opened."""
        await self.data_api.connect()
        if trading:
            await self.clob.connect()
        if chain:
            await self.ctf.connect()
        if store:
            await self.store.connect()

    async def close(self) -> None:
        await self.monitor.disconnect()
        await self.poller.stop()
        await self.ctf.close()
        await self.clob.close()
        await self.data_api.close()
        await self.store.close()
        self._log.info("app_closed")

    async def list_positions(self) -> list[Position]:
        """Operator positions sorted by current value, largest first."""
        positions = await self.liquidation.get_positions()
        return sorted(positions, key=lambda p: p.current_value, reverse=True)

    async def balance(self) -> Decimal:
        """USDC collateral available to the trading wallet. Needs trading=True."""
        return await self.clob.get_balance()

    async def recent_trades(self, limit: int = 50) -> list[TradeObservation]:
        return await self.store.recent_bot_trades(
            self._settings.user_addresses, limit=clamp_limit(limit)
        )

    async def run_monitor(self, stop: Optional[asyncio.Event] = None) -> None:
        """Run the live monitor (with polling fallback) until stop is set."""
        stop = stop or asyncio.Event()
        self._log.info(
            "monitor_starting",
            tracked=len(self._settings.user_addresses),
            url=self._settings.rtds_url,
        )
        await self.monitor.connect()
        try:
            await stop.wait()
        finally:
            await self.monitor.disconnect()
            await self.poller.stop()
