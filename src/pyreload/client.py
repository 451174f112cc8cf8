"""
Client bootstrap script handling.

The browser-side script is rendered once per service: the verbose flag and
the WebSocket scheme/port rewrite are substituted into the packaged source
before it is ever served.
"""

import re
from importlib import resources

RELOAD_FILENAME = "reload.js"
DEFAULT_ROUTE = "/reload/reload.js"

_RELOAD_FILENAME_RE = re.compile(re.escape(RELOAD_FILENAME), re.IGNORECASE)

# Placeholders present in static/reload-client.js
_VERBOSE_PLACEHOLDER = "verboseLogging = false"
_SOCKET_URL_PLACEHOLDER = "socketUrl.replace()"


def normalize_route(route: str) -> str:
    """
    Normalize a route so it ends in exactly one ``/reload.js``.

    Anything from the first (case-insensitive) ``reload.js`` onwards is
    dropped, then a separator and the filename are appended:

        foo            -> foo/reload.js
        foo/           -> foo/reload.js
        foo/ReLoAd.js  -> foo/reload.js
        fooreload.js   -> foo/reload.js
    """
    route = _RELOAD_FILENAME_RE.split(route, maxsplit=1)[0]
    return route + ("" if route.endswith("/") else "/") + RELOAD_FILENAME


def load_client_code() -> str:
    """Read the packaged client script source."""
    return resources.files("pyreload").joinpath("static/reload-client.js").read_text("utf-8")


def render_client_code(
    verbose: bool = False,
    force_wss: bool = False,
    port: int | None = None,
    source: str | None = None,
) -> str:
    """
    Substitute runtime settings into the client script.

    Args:
        verbose: Enable console logging in the browser
        force_wss: Always connect with wss:// regardless of page scheme
        port: Explicit WebSocket port; None reuses the page's own port
        source: Script source, defaults to the packaged script
    """
    code = source if source is not None else load_client_code()

    if verbose:
        code = code.replace(_VERBOSE_PLACEHOLDER, "verboseLogging = true")

    scheme = "wss://$3" if force_wss else "ws$2://$3"
    target = f"{scheme}{port}" if port else f"{scheme}$4"

    return code.replace(
        _SOCKET_URL_PLACEHOLDER,
        r"socketUrl.replace(/(^http(s?):\/\/)(.*:)(.*)/,'" + target + "')",
    )
