"""
pyreload.server - WebSocket listener, connection registry and broadcasting.
"""

from pyreload.server.listener import Listener, ListenerError
from pyreload.server.registry import ConnectionRegistry, connection_identity
from pyreload.server.websocket import (
    ChannelManager,
    attach_channel_route,
    create_channel_router,
)

__all__ = [
    "ChannelManager",
    "ConnectionRegistry",
    "Listener",
    "ListenerError",
    "attach_channel_route",
    "connection_identity",
    "create_channel_router",
]
