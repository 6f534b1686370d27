"""
Unit tests for the RTDS websocket client.

websockets.connect is patched with a fake socket that replays frames.
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from polycopy.integrations.rtds import RtdsClient, RtdsMessage, RtdsStatus


class FakeSocket:
    def __init__(self, frames):
        self._frames = list(frames)
        self.sent = []
        self.close = AsyncMock()

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._frames:
            raise StopAsyncIteration
        return self._frames.pop(0)


TRADE_FRAME = json.dumps(
    {
        "topic": "activity",
        "type": "trades",
        "timestamp": 1700000000000,
        "payload": {"asset": "1", "user": {"address": "0xabc"}},
    }
)


class TestRtdsMessage:
    def test_from_json(self):
        message = RtdsMessage.from_json(json.loads(TRADE_FRAME))

        assert message.topic == "activity"
        assert message.type == "trades"
        assert message.payload["asset"] == "1"

    def test_non_dict_payload(self):
        assert RtdsMessage.from_json({"topic": "x", "payload": [1]}).payload == {}


class TestRtdsClient:
    @pytest.mark.asyncio
    async def test_session_lifecycle(self):
        socket = FakeSocket(["ping", "[1, 2]", TRADE_FRAME])
        statuses = []
        messages = []

        async def on_connect(client):
            await client.subscribe("activity", "trades")

        client = RtdsClient(
            url="wss://example.test",
            on_connect=on_connect,
            on_message=lambda c, m: messages.append(m),
            on_status_change=statuses.append,
        )

        with patch(
            "polycopy.integrations.rtds.websockets.connect",
            AsyncMock(return_value=socket),
        ) as connect:
            await client.connect()

        assert connect.await_args.args[0] == "wss://example.test"
        assert socket.sent == [
            {"action": "subscribe", "subscriptions": [{"topic": "activity", "type": "trades"}]}
        ]
        assert [m.topic for m in messages] == ["activity"]
        # Stream ended without a deliberate close
        assert statuses == [
            RtdsStatus.CONNECTING,
            RtdsStatus.CONNECTED,
            RtdsStatus.DISCONNECTED,
        ]
        socket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_reports_disconnected(self):
        statuses = []
        client = RtdsClient(on_status_change=statuses.append)

        with patch(
            "polycopy.integrations.rtds.websockets.connect",
            AsyncMock(side_effect=OSError("refused")),
        ):
            await client.connect()

        assert statuses == [RtdsStatus.CONNECTING, RtdsStatus.DISCONNECTED]
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_end_session(self):
        socket = FakeSocket([TRADE_FRAME, TRADE_FRAME])
        handler = AsyncMock(side_effect=[RuntimeError("bad"), None])
        client = RtdsClient(on_message=handler)

        with patch(
            "polycopy.integrations.rtds.websockets.connect",
            AsyncMock(return_value=socket),
        ):
            await client.connect()

        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_subscribe_without_socket(self):
        with pytest.raises(ConnectionError):
            await RtdsClient().subscribe("activity", "trades")

    @pytest.mark.asyncio
    async def test_disconnect_is_silent(self):
        statuses = []
        client = RtdsClient(on_status_change=statuses.append)

        await client.disconnect()
        await client.disconnect()

        assert statuses == []
        assert client.status == RtdsStatus.DISCONNECTED
