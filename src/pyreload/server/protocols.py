"""
uvicorn protocol classes that report raw connections to a registry.

The HTTP protocol tracks every accepted transport. On a WebSocket upgrade
uvicorn hands the same transport to the WebSocket protocol, which tracks it
again under the same key and removes it once the connection is lost.

Over TLS the listener accepts plain TCP and TlsHandshakeProtocol performs
the handshake itself, so a connection is tracked from the moment it is
accepted rather than once the handshake completes.
"""

import asyncio
import logging
import ssl
from typing import Any, Callable

from uvicorn.protocols.http.h11_impl import H11Protocol
from uvicorn.protocols.websockets.wsproto_impl import WSProtocol

from pyreload.server.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _registry(config: Any) -> ConnectionRegistry | None:
    return getattr(config, "connection_registry", None)


class TrackedH11Protocol(H11Protocol):
    """HTTP/1.1 protocol that registers its transport."""

    _connection_key: str | None = None

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        registry = _registry(self.config)
        if registry is not None:
            self._connection_key = registry.track(transport)

    def connection_lost(self, exc: Exception | None) -> None:
        registry = _registry(self.config)
        if registry is not None and self._connection_key is not None:
            registry.untrack(self._connection_key)
        super().connection_lost(exc)


class TrackedWSProtocol(WSProtocol):
    """WebSocket protocol that keeps the upgraded transport registered."""

    _connection_key: str | None = None

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        registry = _registry(self.config)
        if registry is not None:
            self._connection_key = registry.track(transport)

    def connection_lost(self, exc: Exception | None) -> None:
        registry = _registry(self.config)
        if registry is not None and self._connection_key is not None:
            registry.untrack(self._connection_key)
        super().connection_lost(exc)


class TlsHandshakeProtocol(asyncio.Protocol):
    """
    Server-side TLS in front of an HTTP protocol.

    The plain TCP transport is registered in connection_made, before any
    TLS bytes are read, so shutdown can abort connections that never
    finish (or never start) the handshake. Once loop.start_tls completes,
    the wrapped HTTP protocol receives the TLS transport and every
    decrypted callback is forwarded to it.
    """

    def __init__(
        self,
        protocol_class: Callable[..., asyncio.Protocol],
        ssl_context: ssl.SSLContext,
        **kwargs: Any,
    ) -> None:
        self._app = protocol_class(**kwargs)
        self._ssl_context = ssl_context
        self._registry = _registry(kwargs.get("config"))
        self._connection_key: str | None = None
        self._handshake: asyncio.Task | None = None
        self._app_connected = False
        self._pending: list[bytes] = []
        self._pending_eof = False

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        # Hold the ClientHello until start_tls has swapped in its protocol
        transport.pause_reading()  # type: ignore[attr-defined]
        if self._registry is not None:
            self._connection_key = self._registry.track(transport)
        self._handshake = asyncio.get_running_loop().create_task(self._start_tls(transport))

    async def _start_tls(self, transport: asyncio.BaseTransport) -> None:
        if transport.is_closing():
            return
        try:
            tls_transport = await asyncio.get_running_loop().start_tls(
                transport,  # type: ignore[arg-type]
                self,
                self._ssl_context,
                server_side=True,
            )
        except OSError as e:
            logger.debug(f"TLS handshake with {self._connection_key} failed: {e!r}")
            transport.abort()
            return

        if tls_transport is None:
            transport.abort()
            return

        self._app.connection_made(tls_transport)
        self._app_connected = True
        for data in self._pending:
            self._app.data_received(data)
        self._pending.clear()
        if self._pending_eof:
            self._app.eof_received()

    def data_received(self, data: bytes) -> None:
        if self._app_connected:
            self._app.data_received(data)
        else:
            self._pending.append(data)

    def eof_received(self) -> bool | None:
        if self._app_connected:
            return self._app.eof_received()
        self._pending_eof = True
        return None

    def connection_lost(self, exc: Exception | None) -> None:
        if self._registry is not None and self._connection_key is not None:
            self._registry.untrack(self._connection_key)
        if self._app_connected:
            self._app_connected = False
            self._app.connection_lost(exc)

    def pause_writing(self) -> None:
        if self._app_connected:
            self._app.pause_writing()

    def resume_writing(self) -> None:
        if self._app_connected:
            self._app.resume_writing()
