"""
Tests for the channel manager and broadcast engine.
"""

import logging

import pytest
from starlette.websockets import WebSocketState

from pyreload.server.websocket import ChannelManager, attach_channel_route


class FakeChannel:
    """Stand-in for a Starlette WebSocket."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: list[str] = []
        self.fail = fail

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, message: str):
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(message)

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED


@pytest.fixture
def manager() -> ChannelManager:
    return ChannelManager()


class TestChannelManager:
    """Tests for connect/disconnect bookkeeping."""

    async def test_connect_accepts_and_registers(self, manager: ChannelManager):
        channel = FakeChannel()

        await manager.connect(channel)  # type: ignore[arg-type]

        assert channel.client_state == WebSocketState.CONNECTED
        assert channel in manager.channels
        assert len(manager) == 1

    async def test_disconnect(self, manager: ChannelManager):
        channel = FakeChannel()
        await manager.connect(channel)  # type: ignore[arg-type]

        manager.disconnect(channel)  # type: ignore[arg-type]

        assert len(manager) == 0

    async def test_channels_is_read_only(self, manager: ChannelManager):
        await manager.connect(FakeChannel())  # type: ignore[arg-type]

        assert isinstance(manager.channels, frozenset)

    def test_is_open_states(self):
        channel = FakeChannel()
        assert ChannelManager.is_open(channel) is False

        channel.client_state = WebSocketState.CONNECTED
        channel.application_state = WebSocketState.CONNECTED
        assert ChannelManager.is_open(channel) is True

        channel.application_state = WebSocketState.DISCONNECTED
        assert ChannelManager.is_open(channel) is False


class TestBroadcast:
    """Tests for broadcast delivery rules."""

    async def test_only_open_channels_receive(self, manager: ChannelManager):
        """Close half of N channels; only the open half gets the message."""
        channels = [FakeChannel() for _ in range(6)]
        for channel in channels:
            await manager.connect(channel)  # type: ignore[arg-type]
        for channel in channels[::2]:
            channel.close()

        sent = await manager.broadcast("reload")

        assert sent == 3
        for channel in channels[::2]:
            assert channel.sent == []
        for channel in channels[1::2]:
            assert channel.sent == ["reload"]

    async def test_connecting_channels_skipped(self, manager: ChannelManager):
        """Channels still mid-handshake are skipped without error."""
        pending = FakeChannel()
        manager._channels.add(pending)  # type: ignore[arg-type]

        assert await manager.broadcast("reload") == 0
        assert pending.sent == []

    async def test_send_failures_are_swallowed(self, manager: ChannelManager):
        broken = FakeChannel(fail=True)
        healthy = FakeChannel()
        await manager.connect(broken)  # type: ignore[arg-type]
        await manager.connect(healthy)  # type: ignore[arg-type]

        sent = await manager.broadcast("reload")

        assert sent == 1
        assert healthy.sent == ["reload"]

    async def test_no_channels(self, manager: ChannelManager):
        assert await manager.broadcast("reload") == 0

    async def test_verbose_logs_snapshot_size(self, caplog):
        """The logged count is the snapshot size, not the number delivered."""
        manager = ChannelManager(verbose=True)
        open_channel = FakeChannel()
        closed_channel = FakeChannel()
        await manager.connect(open_channel)  # type: ignore[arg-type]
        await manager.connect(closed_channel)  # type: ignore[arg-type]
        closed_channel.close()

        with caplog.at_level(logging.INFO, logger="pyreload.server.websocket"):
            await manager.broadcast("reload")

        assert "Sending message to 2 connection(s): reload" in caplog.text

    async def test_quiet_by_default(self, manager: ChannelManager, caplog):
        await manager.connect(FakeChannel())  # type: ignore[arg-type]

        with caplog.at_level(logging.INFO, logger="pyreload.server.websocket"):
            await manager.broadcast("reload")

        assert "Sending message" not in caplog.text


class TestAttachChannelRoute:
    """Tests for attaching the endpoint to a caller-owned app."""

    def test_inserted_first(self):
        from fastapi import FastAPI
        from starlette.routing import WebSocketRoute

        server = FastAPI()
        server.add_api_route("/", lambda: {"ok": True})

        attach_channel_route(server, ChannelManager())

        first = server.router.routes[0]
        assert isinstance(first, WebSocketRoute)
        assert first.path == "/"

    def test_target_without_router(self):
        from pyreload.config import RouteRegistrationError

        with pytest.raises(RouteRegistrationError):
            attach_channel_route(object(), ChannelManager())
