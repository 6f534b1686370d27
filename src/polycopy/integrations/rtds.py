"""Real-time data socket (RTDS) transport for the live activity feed.

A thin websocket client: it connects once, reports status changes and
delivers decoded messages to hooks. It does not reconnect on its own; the
trade monitor owns reconnect and fallback policy.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from polycopy.core.events import invoke_listener

log = structlog.get_logger()

DEFAULT_RTDS_URL = "wss://ws-live-data.polymarket.com"

# Connection parameters
PING_INTERVAL = 20.0
PONG_TIMEOUT = 10.0
CLOSE_TIMEOUT = 5.0


class RtdsStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class RtdsMessage:
    """One decoded feed message."""

    topic: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[int] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "RtdsMessage":
        payload = data.get("payload")
        return cls(
            topic=str(data.get("topic", "")),
            type=str(data.get("type", "")),
            payload=payload if isinstance(payload, dict) else {},
            timestamp=data.get("timestamp"),
        )


Hook = Callable[..., Union[None, Awaitable[None]]]


class RtdsClient:
    """Websocket client for the RTDS feed.

    Hooks may be plain functions or coroutines:
    - on_connect(client) after the socket opens
    - on_message(client, message) for every decoded message
    - on_status_change(status) on every status transition
    """

    def __init__(
        self,
        url: str = DEFAULT_RTDS_URL,
        on_connect: Optional[Hook] = None,
        on_message: Optional[Hook] = None,
        on_status_change: Optional[Hook] = None,
    ):
        self._url = url
        self._on_connect = on_connect
        self._on_message = on_message
        self._on_status_change = on_status_change
        self._ws: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self._status = RtdsStatus.DISCONNECTED
        self._closing = False
        self._log = log.bind(component="rtds_client")

    @property
    def status(self) -> RtdsStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == RtdsStatus.CONNECTED

    def connect(self) -> asyncio.Task:
        """Start connecting in the background and return the run task."""
        if self._task is None or self._task.done():
            self._closing = False
            self._task = asyncio.create_task(self._run())
        return self._task

    async def subscribe(self, topic: str, type: str, filters: Optional[str] = None) -> None:
        subscription: dict[str, Any] = {"topic": topic, "type": type}
        if filters is not None:
            subscription["filters"] = filters
        await self._send({"action": "subscribe", "subscriptions": [subscription]})
        self._log.info("rtds_subscribed", topic=topic, type=type)

    async def unsubscribe(self, topic: str, type: str) -> None:
        await self._send(
            {"action": "unsubscribe", "subscriptions": [{"topic": topic, "type": type}]}
        )

    async def disconnect(self) -> None:
        """Close the socket and stop the run task. Safe to call repeatedly."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        # Requested close, hooks are not notified
        self._status = RtdsStatus.DISCONNECTED

    async def _send(self, data: dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("RTDS socket is not open")
        await self._ws.send(json.dumps(data))

    async def _run(self) -> None:
        await self._set_status(RtdsStatus.CONNECTING)
        try:
            self._ws = await websockets.connect(
                self._url,
                ping_interval=PING_INTERVAL,
                ping_timeout=PONG_TIMEOUT,
                close_timeout=CLOSE_TIMEOUT,
            )
            await self._set_status(RtdsStatus.CONNECTED)
            self._log.info("rtds_connected", url=self._url)
            await invoke_listener(self._on_connect, self)
            await self._receive_messages()
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            self._log.warning("rtds_connection_closed", code=e.code, reason=e.reason)
        except (WebSocketException, OSError) as e:
            self._log.warning("rtds_connection_error", error=str(e))
        except Exception as e:
            self._log.error("rtds_unexpected_error", error=str(e))
        finally:
            await self._close_socket()

        if not self._closing:
            await self._set_status(RtdsStatus.DISCONNECTED)

    async def _receive_messages(self) -> None:
        async for raw_message in self._ws:
            try:
                data = json.loads(raw_message)
            except (json.JSONDecodeError, TypeError):
                # Heartbeat text frames and anything else non-JSON
                continue
            if not isinstance(data, dict):
                continue
            try:
                await invoke_listener(self._on_message, self, RtdsMessage.from_json(data))
            except Exception as e:
                self._log.warning("rtds_message_handler_error", error=str(e))

    async def _close_socket(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                self._log.debug("rtds_close_error", error=str(e))
            self._ws = None

    async def _set_status(self, status: RtdsStatus) -> None:
        if status == self._status:
            return
        self._status = status
        try:
            await invoke_listener(self._on_status_change, status)
        except Exception as e:
            self._log.warning("rtds_status_handler_error", status=status.value, error=str(e))
