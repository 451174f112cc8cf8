"""
Reload service entry point.

create_reload() validates options, serves the client script from the host
app and starts (or attaches) the WebSocket listener. The returned
ReloadHandle is what callers use to trigger reloads and shut down.

Example:
    app = FastAPI()
    handle = await create_reload(app, {"port": 9856})
    ...
    await handle.reload()
    await handle.close_server()
"""

import logging
from typing import Any, Awaitable, Callable, Mapping

from starlette.requests import Request
from starlette.responses import Response

from pyreload.client import render_client_code
from pyreload.config import (
    ConfigurationError,
    ReloadOptions,
    RouteRegistrationError,
    ServiceConfig,
    build_service_config,
)
from pyreload.credentials import create_ssl_context, resolve_credentials
from pyreload.server.listener import Listener
from pyreload.server.websocket import ChannelManager, attach_channel_route

logger = logging.getLogger(__name__)

RELOAD_MESSAGE = "reload"


class ReloadService:
    """
    Wires the listener, channel manager and client script together.

    Standalone mode owns a Listener (and its connection registry). Attached
    mode only registers the channel endpoint on the caller's server, which
    keeps ownership of accepting and closing connections.
    """

    def __init__(self, app: Any, config: ServiceConfig, server: Any = None) -> None:
        self.app = app
        self.config = config
        self.server = server
        self.manager = ChannelManager(verbose=config.verbose)
        self.listener: Listener | None = None
        self._started = False

        port = None if config.attach_to_existing_listener else config.port
        self.client_code = render_client_code(
            verbose=config.verbose,
            force_wss=config.force_wss,
            port=port,
        )

    def register_client_route(self) -> None:
        """
        Serve the client script from the host app.

        Raises:
            RouteRegistrationError: If the app cannot register routes
        """
        add_route = getattr(self.app, "add_route", None)
        if not callable(add_route):
            raise RouteRegistrationError(
                "Could not attach route to app. "
                "Be sure that the app passed is a Starlette or FastAPI app"
            )

        client_code = self.client_code

        async def reload_script(request: Request) -> Response:
            return Response(client_code, media_type="text/javascript")

        route = self.config.route
        if not route.startswith("/"):
            route = "/" + route
        add_route(route, reload_script, methods=["GET"], include_in_schema=False)
        logger.debug(f"Serving reload client script at {route}")

    async def start(self) -> "ReloadHandle":
        """Start the WebSocket listener, or attach to the caller's server."""
        if self.config.verbose:
            logger.info("Starting WebSocket Server")

        if self.config.attach_to_existing_listener:
            attach_channel_route(self.server, self.manager)
        else:
            ssl_context = None
            if self.config.tls is not None:
                ssl_context = create_ssl_context(resolve_credentials(self.config.tls))
            listener = Listener(self.config, self.manager, ssl_context=ssl_context)
            await listener.start()
            self.listener = listener

        self._started = True
        return self.handle()

    async def broadcast(self, message: str) -> None:
        """Send a message to every open channel. Never raises per-channel errors."""
        await self.manager.broadcast(message)

    async def close(self) -> None:
        """Forcibly shut down the listener. No-op in attached mode."""
        if self.listener is None:
            return
        await self.listener.close()

    def handle(self) -> "ReloadHandle":
        return ReloadHandle(self)


class ReloadHandle:
    """
    Caller-facing API of a running (or deferred) reload service.

    Attributes:
        start_websocket_server: Starts the listener; only set when the
            start was deferred with ``webSocketServerWaitStart``
        reload_client_code: Returns the rendered client script; only set
            in attached mode
    """

    def __init__(self, service: ReloadService) -> None:
        self._service = service
        self.start_websocket_server: Callable[[], Awaitable[ReloadHandle]] | None = None
        self.reload_client_code: Callable[[], str] | None = None

        if service.config.defer_start:
            self.start_websocket_server = service.start

        if service.config.attach_to_existing_listener:
            self.reload_client_code = lambda: service.client_code

    async def reload(self) -> None:
        """Tell every connected client to reload."""
        await self._service.broadcast(RELOAD_MESSAGE)

    async def close_server(self) -> None:
        """Terminate all connections and close the listener."""
        await self._service.close()

    @property
    def wss(self) -> frozenset:
        """Read-only snapshot of the upgraded channels."""
        return self._service.manager.channels

    @property
    def connections(self) -> list[str]:
        """Identities of the raw connections held by a standalone listener."""
        listener = self._service.listener
        return listener.registry.keys() if listener is not None else []

    @property
    def port(self) -> int | None:
        """Listener port; None in attached mode."""
        listener = self._service.listener
        return listener.port if listener is not None else None


async def create_reload(
    app: Any,
    opts: ReloadOptions | Mapping[str, Any] | None = None,
    server: Any = None,
) -> ReloadHandle:
    """
    Set up live reload for an ASGI app.

    Args:
        app: Host Starlette/FastAPI app the client script route is added to
        opts: Options (port, https, forceWss, verbose,
            webSocketServerWaitStart, route)
        server: Existing Starlette/FastAPI app to attach the WebSocket
            endpoint to instead of starting a standalone listener

    Returns:
        ReloadHandle, once the listener is accepting connections (or right
        away when attached or deferred)

    Raises:
        ConfigurationError: If arguments or options are invalid
        RouteRegistrationError: If the app cannot register the script route
        OSError: If credential files cannot be read or the port cannot be bound
    """
    if app is None or not callable(app):
        raise ConfigurationError("Lack of/invalid arguments provided to reload")

    config = build_service_config(opts, attached=server is not None)
    service = ReloadService(app, config, server=server)

    if not config.attach_to_existing_listener:
        service.register_client_route()

    if config.defer_start:
        return service.handle()

    return await service.start()
