"""
Raw connection registry.

Tracks every transport accepted by the standalone listener, upgraded or
not, so shutdown can forcibly terminate all of them. All mutations happen
on the event loop thread, so no locking is needed.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


def connection_identity(transport: asyncio.BaseTransport) -> str:
    """Return the "address:port" identity of a transport's remote end."""
    peername = transport.get_extra_info("peername")
    if isinstance(peername, (tuple, list)) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    # Unix sockets and other transports without an address/port pair
    return f"{peername}:{id(transport)}"


class ConnectionRegistry:
    """
    Map of connection identity to raw transport.

    A record exists while its transport is open: it is inserted when the
    connection is made and removed when the connection is lost.
    """

    def __init__(self) -> None:
        self._connections: dict[str, asyncio.BaseTransport] = {}

    def track(self, transport: asyncio.BaseTransport) -> str:
        """
        Insert a transport, overwriting any record with the same identity.

        Returns:
            The identity key the transport was stored under
        """
        key = connection_identity(transport)
        self._connections[key] = transport
        logger.debug(f"Tracking connection {key} ({len(self._connections)} open)")
        return key

    def untrack(self, key: str) -> None:
        """Remove a record if it is still present."""
        if self._connections.pop(key, None) is not None:
            logger.debug(f"Connection {key} closed ({len(self._connections)} open)")

    def terminate_all(self) -> int:
        """
        Abort every tracked transport without a graceful close handshake.

        Returns:
            Number of connections terminated
        """
        connections = list(self._connections.values())
        for transport in connections:
            transport.abort()
        self._connections.clear()
        if connections:
            logger.debug(f"Terminated {len(connections)} connection(s)")
        return len(connections)

    def keys(self) -> list[str]:
        """Snapshot of the tracked identities."""
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: object) -> bool:
        return key in self._connections
