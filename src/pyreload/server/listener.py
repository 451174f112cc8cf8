"""
Standalone WebSocket listener.

Runs a uvicorn server on the caller's event loop with protocol classes
that feed the connection registry. Shutdown aborts every tracked raw
connection first, then stops the server and waits for it to finish.
"""

import asyncio
import contextlib
import functools
import logging
import socket
import ssl
from typing import Any, Iterator

import uvicorn
from fastapi import FastAPI

from pyreload.config import ReloadError, ServiceConfig
from pyreload.server.protocols import (
    TlsHandshakeProtocol,
    TrackedH11Protocol,
    TrackedWSProtocol,
)
from pyreload.server.registry import ConnectionRegistry
from pyreload.server.websocket import ChannelManager, create_channel_router

logger = logging.getLogger(__name__)


class ListenerError(ReloadError):
    """Raised when the listener stops before it started serving."""

    pass


class ListenerConfig(uvicorn.Config):
    """uvicorn config carrying the registry the tracked protocols report to."""

    def __init__(
        self,
        app: Any,
        connection_registry: ConnectionRegistry,
        ssl_context: ssl.SSLContext | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("http", TrackedH11Protocol)
        kwargs.setdefault("ws", TrackedWSProtocol)
        kwargs.setdefault("lifespan", "off")
        # Leave the host process' logging setup alone
        kwargs.setdefault("log_config", None)
        kwargs.setdefault("access_log", False)
        super().__init__(app, **kwargs)
        self.connection_registry = connection_registry
        self.tls_context = ssl_context

    def load(self) -> None:
        super().load()
        # uvicorn listens on plain TCP, the handshake runs per connection
        if self.tls_context is not None:
            self.http_protocol_class = functools.partial(
                TlsHandshakeProtocol, self.http_protocol_class, self.tls_context
            )


class ListenerServer(uvicorn.Server):
    """
    uvicorn server embedded in a host process, which owns signal handling.

    `ready` is set once startup has finished and the sockets are accepting.
    """

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.ready = asyncio.Event()

    async def startup(self, sockets: list[socket.socket] | None = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self.ready.set()

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def create_listener_app(manager: ChannelManager) -> FastAPI:
    """Create the listener's ASGI app: a WebSocket endpoint on every path."""
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)
    app.include_router(create_channel_router(manager))
    return app


class Listener:
    """
    Owns the standalone listener: bind, serve, forced shutdown.

    The connection registry is owned here and shared only with the
    protocol classes (through ListenerConfig).
    """

    def __init__(
        self,
        config: ServiceConfig,
        manager: ChannelManager,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.config = config
        self.manager = manager
        self.registry = ConnectionRegistry()
        self._ssl_context = ssl_context
        self._socket: socket.socket | None = None
        self._bound_port: int | None = None
        self._server: ListenerServer | None = None
        self._serve_task: asyncio.Task | None = None

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, self.config.port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def start(self) -> None:
        """
        Bind the port and start serving.

        Returns once the server is accepting connections, or the serve
        task ends first. A failed start closes the bound socket.

        Raises:
            OSError: If the port cannot be bound
            ListenerError: If the server exits during startup
        """
        self._socket = self._bind_socket()
        self._bound_port = self._socket.getsockname()[1]

        try:
            uvicorn_config = ListenerConfig(
                create_listener_app(self.manager),
                connection_registry=self.registry,
                ssl_context=self._ssl_context,
                host=self.config.host,
                port=self.config.port,
            )
            self._server = ListenerServer(uvicorn_config)
            self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
            await self._wait_started(self._server, self._serve_task)
        except BaseException:
            if self._serve_task is not None and not self._serve_task.done():
                self._serve_task.cancel()
            self._socket.close()
            raise

        scheme = "wss" if self._ssl_context is not None else "ws"
        logger.debug(f"Reload listener serving on {scheme}://{self.config.host}:{self.port}")

    async def _wait_started(self, server: ListenerServer, serve_task: asyncio.Task) -> None:
        ready = asyncio.create_task(server.ready.wait())
        try:
            await asyncio.wait({ready, serve_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()

        if not server.started:
            # Surfaces the startup exception, if there was one
            await serve_task
            raise ListenerError(f"Listener on port {self.config.port} failed to start")

    async def close(self) -> None:
        """
        Forcibly terminate every tracked connection, then stop the server.

        Completes once the server has fully closed. Errors raised while
        closing propagate to the caller.
        """
        if self._server is not None:
            # No new connections past this point
            for server in getattr(self._server, "servers", []):
                server.close()

        terminated = self.registry.terminate_all()
        logger.debug(f"Shutting down listener, terminated {terminated} connection(s)")

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await self._serve_task
        if self._socket is not None:
            self._socket.close()

    @property
    def port(self) -> int:
        """Port the listener is bound to."""
        if self._bound_port is None:
            return self.config.port
        return self._bound_port

    @property
    def is_serving(self) -> bool:
        """Whether the server task is still running."""
        return self._serve_task is not None and not self._serve_task.done()
