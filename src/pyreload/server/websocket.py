"""
Upgraded WebSocket channels and message broadcasting.

The endpoint accepts the upgrade, registers the channel and keeps it open
until the client disconnects. Broadcasts go to every channel that is open
at call time; everything else is skipped silently.
"""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocketState

from pyreload.config import RouteRegistrationError

logger = logging.getLogger(__name__)


class ChannelManager:
    """
    Set of upgraded channels and the broadcast engine over them.

    Channels are added once the upgrade handshake completes and removed
    when the endpoint sees the client disconnect.
    """

    def __init__(self, verbose: bool = False) -> None:
        """Initialize channel manager."""
        self.verbose = verbose
        self._channels: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """
        Complete the upgrade handshake and register the channel.

        Args:
            websocket: Channel that requested the upgrade
        """
        await websocket.accept()
        self._channels.add(websocket)

        if self.verbose:
            logger.info("Reload client connected to server")
        logger.debug(f"WebSocket connected, {len(self._channels)} channel(s)")

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a channel."""
        self._channels.discard(websocket)
        logger.debug("WebSocket disconnected")

    @staticmethod
    def is_open(websocket: Any) -> bool:
        """Return True only for channels in the open state."""
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def broadcast(self, message: str) -> int:
        """
        Send a message to every open channel.

        Fire-and-forget: no buffering, retry or acknowledgement. Channels
        that are not open are skipped and send failures are swallowed.

        Args:
            message: Text payload

        Returns:
            Number of channels the message was handed to
        """
        channels = list(self._channels)

        if self.verbose:
            logger.info(f"Sending message to {len(channels)} connection(s): {message}")

        sent = 0
        for websocket in channels:
            if not self.is_open(websocket):
                continue
            try:
                await websocket.send_text(message)
                sent += 1
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")

        return sent

    async def handle(self, websocket: WebSocket) -> None:
        """Serve one channel until the client goes away."""
        await self.connect(websocket)
        try:
            while True:
                # Incoming frames carry no meaning, only the disconnect matters
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except Exception as e:
            logger.debug(f"WebSocket error: {e}")
        finally:
            self.disconnect(websocket)

    @property
    def channels(self) -> frozenset[WebSocket]:
        """Read-only snapshot of the current channels."""
        return frozenset(self._channels)

    def __len__(self) -> int:
        return len(self._channels)


def create_channel_router(manager: ChannelManager, path: str = "/{path:path}") -> APIRouter:
    """
    Build a router whose WebSocket endpoint feeds the given manager.

    The default path accepts upgrades on any path.
    """
    router = APIRouter()

    @router.websocket(path)
    async def reload_channel(websocket: WebSocket) -> None:
        await manager.handle(websocket)

    return router


def attach_channel_route(server: Any, manager: ChannelManager, path: str = "/") -> None:
    """
    Register the channel endpoint on a caller-owned Starlette/FastAPI app.

    The route is put in front of existing routes so catch-all mounts (for
    example static files at "/") do not shadow it.

    Raises:
        RouteRegistrationError: If the target has no router to attach to
    """
    router = getattr(server, "router", None)
    routes = getattr(router, "routes", None)
    if not isinstance(routes, list):
        raise RouteRegistrationError(
            "Could not attach WebSocket route to server. "
            "Be sure that the server passed is a Starlette or FastAPI app"
        )

    routes.insert(0, WebSocketRoute(path, manager.handle, name="reload_channel"))
