"""
Static file server with live reload, used by ``pyreload serve``.

reload runs attached to this app: the WebSocket endpoint shares the HTTP
port, and the client script is served from the rendered code the handle
exposes.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles
from watchfiles import awatch

from pyreload.client import normalize_route
from pyreload.service import ReloadHandle, create_reload

logger = logging.getLogger(__name__)


async def watch_directory(directory: Path, handle: ReloadHandle) -> None:
    """Broadcast a reload for every batch of file changes under directory."""
    async for changes in awatch(directory):
        logger.debug(f"Detected {len(changes)} change(s) in {directory}")
        await handle.reload()


def create_static_app(
    directory: Path,
    route: str = "/reload/reload.js",
    verbose: bool = False,
    watch: bool = True,
) -> FastAPI:
    """
    Create an app serving directory with live reload attached.

    Args:
        directory: Directory of static files to serve
        route: Route for the client script (normalized to end in reload.js)
        verbose: Log connections and broadcasts
        watch: Reload clients when files under directory change
    """
    route = normalize_route(route)
    if not route.startswith("/"):
        route = "/" + route

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        handle = await create_reload(app, {"verbose": verbose}, server=app)
        app.state.reload = handle

        watcher = asyncio.create_task(watch_directory(directory, handle)) if watch else None

        yield

        if watcher is not None:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
        await handle.close_server()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(route, include_in_schema=False)
    async def reload_script(request: Request) -> Response:  # pyright: ignore[reportUnusedFunction]
        handle: ReloadHandle = request.app.state.reload
        return Response(handle.reload_client_code(), media_type="text/javascript")

    app.mount("/", StaticFiles(directory=directory, html=True), name="static")
    return app
