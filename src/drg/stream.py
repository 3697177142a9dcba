"""Follow an application's event stream over the websocket integration."""

from __future__ import annotations

import json
import logging
import ssl
import sys
from typing import Any, Callable, Optional, TextIO
from urllib.parse import quote

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect

from drg.cli.config import Context, OAuthToken
from drg.client import DrogueClient
from drg.endpoints import get_websocket_endpoint
from drg.errors import DrogueError, UnexpectedClientError
from drg.openid import verify_token_validity

logger = logging.getLogger(__name__)


def stream_url(endpoint: str, app: str) -> str:
    return f"{endpoint.rstrip('/')}/{quote(app, safe='')}"


def render_event(message: str | bytes, device: Optional[str], stdout: TextIO) -> bool:
    """Print one event, filtered by sender when ``device`` is set.

    Returns whether the event was printed.
    """
    if isinstance(message, bytes):
        return False
    try:
        event = json.loads(message)
    except json.JSONDecodeError:
        print(message, file=stdout)
        return True
    if device is not None and (not isinstance(event, dict) or event.get("sender") != device):
        return False
    print(json.dumps(event, indent=2, sort_keys=True), file=stdout)
    return True


def _insecure_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def stream_app(
    context: Context,
    app: str,
    *,
    device: Optional[str] = None,
    count: Optional[int] = None,
    insecure: bool = False,
    stdout: TextIO = sys.stdout,
    on_refresh: Callable[[], None] | None = None,
) -> int:
    """Print incoming events until ``count`` messages were received.

    Returns the number of messages received.
    """
    endpoint = get_websocket_endpoint(DrogueClient.from_context(context))
    url = stream_url(endpoint, app)
    ssl_context: Any = None
    if insecure and url.startswith("wss://"):
        logger.warning("Skipping certificate verification")
        ssl_context = _insecure_context()

    received = 0
    logger.debug("Connecting to websocket %s", url)
    try:
        with connect(
            url,
            additional_headers={"Authorization": context.authorization_header()},
            ssl=ssl_context,
        ) as socket:
            while count is None or received < count:
                try:
                    message = socket.recv()
                except ConnectionClosed as exc:
                    logger.warning("Connection closed by server: %s", exc)
                    break
                received += 1
                render_event(message, device, stdout)

                try:
                    refreshed = verify_token_validity(context)
                except DrogueError as exc:
                    logger.error("Error refreshing token - %s", exc)
                    refreshed = False
                if refreshed and isinstance(context.token, OAuthToken):
                    logger.debug("sending a refreshed token")
                    socket.send(json.dumps({"RefreshAccessToken": context.token.access_token}))
                    if on_refresh is not None:
                        on_refresh()
    except (OSError, WebSocketException) as exc:
        raise UnexpectedClientError(f"Error connecting to the Websocket endpoint: {exc}") from exc
    return received
