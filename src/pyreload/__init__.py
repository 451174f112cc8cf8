"""
pyreload - Live reload for ASGI web apps

Holds WebSocket connections from browser pages and tells them to refresh
on demand. The client bootstrap script is served from the host app.

Example usage:
    from fastapi import FastAPI
    from pyreload import create_reload

    app = FastAPI()
    handle = await create_reload(app, {"port": 9856})
    await handle.reload()

    # Serve a directory with live reload from the command line
    $ pyreload serve ./public
"""

__version__ = "0.1.0"

from pyreload.client import DEFAULT_ROUTE, normalize_route, render_client_code
from pyreload.config import (
    CertAndKeyCredentials,
    ConfigurationError,
    HttpsOptions,
    P12Credentials,
    ReloadError,
    ReloadOptions,
    ReloadSettings,
    RouteRegistrationError,
    ServiceConfig,
    get_settings,
)
from pyreload.credentials import ResolvedCredentials, create_ssl_context, resolve_credentials
from pyreload.service import RELOAD_MESSAGE, ReloadHandle, ReloadService, create_reload

__all__ = [
    # Version info
    "__version__",
    # Entry point
    "create_reload",
    "ReloadHandle",
    "ReloadService",
    "RELOAD_MESSAGE",
    # Configuration
    "ReloadOptions",
    "ReloadSettings",
    "ServiceConfig",
    "HttpsOptions",
    "P12Credentials",
    "CertAndKeyCredentials",
    "get_settings",
    # Errors
    "ReloadError",
    "ConfigurationError",
    "RouteRegistrationError",
    # Credentials
    "ResolvedCredentials",
    "resolve_credentials",
    "create_ssl_context",
    # Client script
    "DEFAULT_ROUTE",
    "normalize_route",
    "render_client_code",
]
