"""Real-Time Trade Monitor.

Subscribes to the market-wide activity feed, keeps trades from tracked
wallets, stores them and re-emits them locally. Connection handling is an
explicit state machine (MonitorConnectionState): repeated disconnects back
off exponentially and, after the configured number of attempts, the
monitor flips into fallback mode once and announces it so the polling
fallback can take over.

The monitor never raises to its caller. Connection and handler failures are
logged and absorbed into the state machine.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from polycopy.core.bot_state import BotState
from polycopy.core.events import FALLBACK_EVENT, TRADE_EVENT, EventEmitter
from polycopy.domain.models import (
    ConnectionState,
    MonitorConnectionState,
    TradeEvent,
    TradeObservation,
    to_decimal,
)
from polycopy.integrations.rtds import DEFAULT_RTDS_URL, RtdsClient, RtdsMessage, RtdsStatus
from polycopy.services.observation_store import ObservationStore

log = structlog.get_logger()

ACTIVITY_TOPIC = "activity"
TRADES_TYPE = "trades"


def parse_timestamp(value: Any, now: Optional[float] = None) -> int:
    """Convert a feed timestamp to epoch seconds.

    ISO-8601 strings and numeric strings are accepted; anything missing or
    unparseable falls back to now.
    """
    current = int(now if now is not None else time.time())
    if value is None or value == "":
        return current
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            return int(float(text))
        except ValueError:
            return current

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def normalize_trade(payload: dict[str, Any], now: Optional[float] = None) -> TradeObservation:
    """Build a TradeObservation from an activity/trades payload."""
    user = payload.get("user") or {}
    market = payload.get("market") or {}

    outcome_index = payload.get("outcome_index", payload.get("outcomeIndex"))
    return TradeObservation(
        transaction_hash=str(
            payload.get("transaction_hash") or payload.get("transactionHash") or ""
        ),
        wallet=str(user.get("address") or payload.get("proxyWallet") or "").lower(),
        asset=str(payload.get("asset") or ""),
        side=str(payload.get("side") or "UNKNOWN"),
        size=to_decimal(payload.get("size")),
        price=to_decimal(payload.get("price")),
        timestamp=parse_timestamp(payload.get("timestamp"), now),
        condition_id=str(market.get("condition_id") or payload.get("conditionId") or ""),
        title=str(market.get("question") or payload.get("title") or ""),
        slug=str(market.get("slug") or payload.get("slug") or ""),
        event_slug=str(payload.get("event_slug") or payload.get("eventSlug") or ""),
        outcome=str(payload.get("outcome") or ""),
        outcome_index=int(outcome_index) if outcome_index is not None else 0,
    )


class TradeMonitor:
    """Streaming monitor for tracked wallets with reconnect and fallback."""

    def __init__(
        self,
        addresses: Sequence[str],
        store: ObservationStore,
        emitter: EventEmitter,
        bot_state: Optional[BotState] = None,
        url: str = DEFAULT_RTDS_URL,
        too_old_hours: int = 24,
        max_reconnect_attempts: int = 10,
        reconnect_delay_seconds: float = 1.0,
        client_factory: Callable[..., RtdsClient] = RtdsClient,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the monitor.

        Args:
            addresses: Wallets to track (case-insensitive).
            store: Observation store used for persistence.
            emitter: Local emitter for "trade" and "fallback" events.
            bot_state: Pause state copied onto emitted trade events.
            url: Feed websocket URL.
            too_old_hours: Trades older than this are not stored.
            max_reconnect_attempts: Attempts before switching to fallback.
            reconnect_delay_seconds: Base delay; attempt i waits base * 2**i.
            client_factory: Builds the feed client; replaced in tests.
        """
        self._tracked = {a.lower() for a in addresses}
        self._store = store
        self._emitter = emitter
        self._bot_state = bot_state
        self._url = url
        self._too_old_seconds = too_old_hours * 3600
        self._max_attempts = max_reconnect_attempts
        self._base_delay = reconnect_delay_seconds
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep

        self._conn = MonitorConnectionState()
        self._client: Optional[RtdsClient] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stopped = False
        self._log = log.bind(component="trade_monitor")

    # =========================================================================
    # State
    # =========================================================================

    @property
    def connected(self) -> bool:
        return self._conn.connected

    @property
    def is_fallback_mode(self) -> bool:
        return self._conn.fallback_active

    @property
    def state(self) -> ConnectionState:
        return self._conn.state

    @property
    def reconnect_attempts(self) -> int:
        return self._conn.reconnect_attempts

    @property
    def tracked_addresses(self) -> frozenset[str]:
        return frozenset(self._tracked)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open the feed connection.

        No-op in fallback mode or while a client is connecting or connected.
        """
        if self._conn.fallback_active:
            self._log.info("ws_connect_skipped_fallback")
            return
        if self._client is not None and self._conn.state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ):
            self._log.debug("ws_connect_skipped_active", state=self._conn.state.value)
            return

        self._stopped = False
        self._conn.begin_connect()
        self._log.info("ws_connecting", url=self._url, tracked=len(self._tracked))

        try:
            self._client = self._client_factory(
                url=self._url,
                on_connect=self._handle_connect,
                on_message=self.handle_message,
                on_status_change=self._handle_status_change,
            )
            self._client.connect()
        except Exception as e:
            self._log.error("ws_connect_failed", error=str(e))
            self._conn.mark_disconnected()
            self._schedule_reconnect()

    async def disconnect(self) -> None:
        """Tear down the connection and cancel any pending reconnect."""
        self._stopped = True

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:
                self._log.debug("ws_disconnect_error", error=str(e))

        self._conn.mark_disconnected()
        self._log.info("ws_disconnected")

    def reset_fallback(self) -> None:
        """Leave fallback mode and clear the attempt counter."""
        self._conn.reset()
        self._log.info("ws_fallback_reset")

    # =========================================================================
    # Client hooks
    # =========================================================================

    async def _handle_connect(self, client: RtdsClient) -> None:
        self._conn.mark_connected()
        self._log.info("ws_connected")
        try:
            await client.subscribe(ACTIVITY_TOPIC, TRADES_TYPE)
        except Exception as e:
            self._log.error("ws_subscribe_failed", error=str(e))

    async def _handle_status_change(self, status: RtdsStatus) -> None:
        if self._stopped:
            return
        if status == RtdsStatus.CONNECTED:
            self._conn.mark_connected()
        elif status == RtdsStatus.CONNECTING:
            self._log.debug("ws_status_connecting")
        elif status == RtdsStatus.DISCONNECTED:
            self._log.warning("ws_status_disconnected")
            self._conn.mark_disconnected()
            self._schedule_reconnect()

    async def handle_message(
        self, client: Optional[RtdsClient], message: RtdsMessage
    ) -> Optional[TradeObservation]:
        """Process one feed message.

        Returns:
            The observation emitted, or None when the message was ignored or
            handling failed.
        """
        try:
            if message.topic != ACTIVITY_TOPIC or message.type != TRADES_TYPE:
                return None

            user = message.payload.get("user") or {}
            address = str(user.get("address") or "").lower()
            if not address or address not in self._tracked:
                return None

            now = self._clock()
            observation = normalize_trade(message.payload, now)
            self._log.info(
                "ws_trade_detected",
                wallet=address,
                side=observation.side,
                usdc_size=str(observation.usdc_size),
            )

            await self._persist(observation, now)

            paused = self._bot_state.is_paused if self._bot_state else False
            await self._emitter.emit(
                TRADE_EVENT,
                TradeEvent(observation=observation, source="stream", paused=paused),
            )
            return observation
        except Exception as e:
            self._log.error("ws_message_error", error=str(e))
            return None

    async def _persist(self, observation: TradeObservation, now: float) -> None:
        cutoff = int(now) - self._too_old_seconds
        if observation.timestamp < cutoff:
            self._log.info("ws_trade_too_old", timestamp=observation.timestamp, cutoff=cutoff)
            return
        if await self._store.record_if_new(observation):
            self._log.info(
                "ws_trade_stored",
                tx_hash=observation.transaction_hash,
                usdc_size=str(observation.usdc_size),
            )

    # =========================================================================
    # Reconnect policy
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        if self._conn.fallback_active or self._stopped:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        delay = self._conn.next_backoff_delay(self._base_delay, self._max_attempts)
        if delay is None:
            await self._activate_fallback()
            return

        self._log.info(
            "ws_reconnect_scheduled",
            delay=delay,
            attempt=self._conn.reconnect_attempts,
            max_attempts=self._max_attempts,
        )
        await self._sleep(delay)

        if self._conn.fallback_active or self._stopped:
            return

        old_client, self._client = self._client, None
        if old_client is not None:
            try:
                await old_client.disconnect()
            except Exception as e:
                self._log.debug("ws_disconnect_error", error=str(e))

        # Allow the next disconnect to schedule another attempt.
        self._reconnect_task = None
        await self.connect()

    async def _activate_fallback(self) -> None:
        if not self._conn.activate_fallback():
            return
        self._log.warning(
            "ws_fallback_activated",
            attempts=self._conn.reconnect_attempts,
            max_attempts=self._max_attempts,
        )
        await self._emitter.emit(FALLBACK_EVENT, {"attempts": self._conn.reconnect_attempts})
