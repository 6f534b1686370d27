"""In-process event emitter.

The trade monitor and the polling fallback publish on it, and anything
running in the same process (CLI printer, a dashboard stream) subscribes.

Events:
    - trade: a normalized TradeObservation was seen
    - fallback: the streaming monitor gave up; polling should take over

Usage:
    emitter = EventEmitter()
    emitter.on("trade", my_callback)
    await emitter.emit("trade", observation)
    emitter.off("trade", my_callback)
"""

import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import structlog

log = structlog.get_logger()

TRADE_EVENT = "trade"
FALLBACK_EVENT = "fallback"


async def invoke_listener(callback: Optional[Callable], *args: Any) -> None:
    """Call a sync or async callback; None is a no-op."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class EventEmitter:
    """Named-event emitter with sync or async listeners."""

    def __init__(self, max_listeners: int = 100):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._max_listeners = max_listeners

    def on(self, event: str, callback: Callable) -> None:
        """Subscribe to an event.

        Args:
            event: Event name.
            callback: Called with the event payload. Can be sync or async.
        """
        listeners = self._listeners[event]
        if callback in listeners:
            return
        if len(listeners) >= self._max_listeners:
            log.warning("max_listeners_exceeded", event=event, limit=self._max_listeners)
        listeners.append(callback)
        log.debug("event_subscriber_added", event_name=event, total=len(listeners))

    def off(self, event: str, callback: Callable) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)
            log.debug("event_subscriber_removed", event_name=event, total=len(listeners))

    async def emit(self, event: str, payload: Any = None) -> None:
        """Emit event to all listeners.

        A failing listener is logged and does not stop the others.
        """
        for listener in list(self._listeners.get(event, [])):
            try:
                await invoke_listener(listener, payload)
            except Exception as e:
                log.error("event_listener_error", event_name=event, error=str(e))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))
