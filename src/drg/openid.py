"""Login flows and token refresh against the Drogue Cloud SSO."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import webbrowser
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional, TextIO
from urllib.parse import parse_qs, urlencode, urlparse

from pydantic import ValidationError

from drg.cli.config import AccessToken, Context, OAuthToken
from drg.client import DrogueClient
from drg.endpoints import ServiceEndpoints, discover, get_authenticated_endpoints
from drg.errors import ConfigIssueError, DrogueError, InvalidInputError, UnexpectedClientError

logger = logging.getLogger(__name__)

CLIENT_ID = "drogue"
REDIRECT_PORT = 8080
REDIRECT_URL = f"http://localhost:{REDIRECT_PORT}"
SCOPE = "offline_access"

ClientFactory = Callable[..., DrogueClient]


def _build_context(
    name: str,
    api_url: str,
    endpoints: ServiceEndpoints,
    token: OAuthToken | AccessToken,
) -> Context:
    try:
        context = Context(
            name=name,
            drogue_cloud_url=api_url,
            token=token,
            token_url=endpoints.token_url,
            auth_url=endpoints.auth_url,
            registry_url=endpoints.registry_url,
        )
    except ValidationError as exc:
        raise ConfigIssueError(f"invalid context {name}: {exc}") from exc
    if isinstance(token, OAuthToken):
        context.set_oauth_token(token)
    return context


def _oauth_token(payload: Any) -> OAuthToken:
    try:
        return OAuthToken.model_validate(
            {
                "access_token": payload["access_token"],
                "refresh_token": payload.get("refresh_token"),
                "expires_in": payload.get("expires_in"),
                "token_type": payload.get("token_type") or "Bearer",
            }
        )
    except (KeyError, TypeError, ValidationError) as exc:
        raise UnexpectedClientError(f"invalid token response: {exc}") from exc


def parse_access_token(raw: str) -> tuple[str, str]:
    user, sep, token = raw.partition(":")
    if not sep or not user or not token:
        raise InvalidInputError("Invalid access token. Format should be username:token")
    return user, token


def context_from_access_token(
    name: str,
    api_url: str,
    user: str,
    token: str,
    *,
    client_factory: ClientFactory = DrogueClient,
) -> Context:
    """Build a context for a personal access token and check that it is accepted."""
    endpoints = discover(client_factory(base_url=api_url))
    context = _build_context(name, api_url, endpoints, AccessToken(id=user, token=token))
    authenticated = client_factory(
        base_url=api_url,
        registry_url=endpoints.registry_url,
        authorization=context.authorization_header(),
    )
    get_authenticated_endpoints(authenticated)
    return context


def refresh_token_login(
    name: str,
    api_url: str,
    refresh_token: str,
    *,
    client_factory: ClientFactory = DrogueClient,
) -> Context:
    client = client_factory(base_url=api_url)
    endpoints = discover(client)
    token = _exchange_refresh_token(client, endpoints.token_url, refresh_token)
    return _build_context(name, api_url, endpoints, token)


def _exchange_refresh_token(client: DrogueClient, token_url: str, refresh_token: str) -> OAuthToken:
    payload = client.exchange_token(
        token_url,
        {"grant_type": "refresh_token", "refresh_token": refresh_token, "client_id": CLIENT_ID},
    )
    token = _oauth_token(payload)
    if token.refresh_token is None:
        token.refresh_token = refresh_token
    return token


def _pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(64)[:96]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def authorization_url(auth_url: str, *, state: str, challenge: str) -> str:
    query = urlencode(
        {
            "response_type": "code",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URL,
            "scope": SCOPE,
            "state": state,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
    )
    separator = "&" if urlparse(auth_url).query else "?"
    return f"{auth_url}{separator}{query}"


class _CallbackHandler(BaseHTTPRequestHandler):
    received: dict[str, str] = {}

    def do_GET(self) -> None:  # noqa: N802
        query = parse_qs(urlparse(self.path).query)
        type(self).received = {key: values[0] for key, values in query.items() if values}
        body = b"Authentication code retrieved. This browser can be closed."
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("callback server: " + format, *args)


def _wait_for_code(port: int) -> dict[str, str]:
    handler = type("CallbackHandler", (_CallbackHandler,), {"received": {}})
    with HTTPServer(("localhost", port), handler) as server:
        while not handler.received:
            server.handle_request()
    return handler.received


def browser_login(
    name: str,
    api_url: str,
    *,
    stdout: TextIO,
    client_factory: ClientFactory = DrogueClient,
    open_browser: Callable[[str], bool] = webbrowser.open,
    wait_for_code: Callable[[int], dict[str, str]] = _wait_for_code,
) -> Context:
    """Interactive authorization-code login with PKCE."""
    print(f"Starting authentication process with {api_url}", file=stdout)
    client = client_factory(base_url=api_url)
    endpoints = discover(client)

    verifier, challenge = _pkce_pair()
    state = secrets.token_urlsafe(16)
    url = authorization_url(endpoints.auth_url, state=state, challenge=challenge)
    if not open_browser(url):
        print(f"\nTo authenticate with drogue cloud please browse to:\n{url}", file=stdout)

    received = wait_for_code(REDIRECT_PORT)
    if received.get("state") != state:
        raise InvalidInputError("authentication state mismatch, login aborted")
    code = received.get("code")
    if not code:
        raise InvalidInputError(f"no authorization code received: {received.get('error', 'unknown error')}")

    payload = client.exchange_token(
        endpoints.token_url,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URL,
            "client_id": CLIENT_ID,
            "code_verifier": verifier,
        },
    )
    return _build_context(name, api_url, endpoints, _oauth_token(payload))


def verify_token_validity(
    context: Context,
    *,
    now: Optional[datetime] = None,
    client_factory: ClientFactory = DrogueClient,
) -> bool:
    """Refresh the context token when it is about to expire.

    Returns whether the context was modified. Access tokens never expire
    and are left untouched.
    """
    if not context.needs_refresh(now):
        return False
    token = context.token
    if not isinstance(token, OAuthToken) or not token.refresh_token:
        raise ConfigIssueError("Error loading refresh token from config")
    logger.info("Token is expired or will be soon, refreshing")
    try:
        new_token = _exchange_refresh_token(
            client_factory(base_url=context.drogue_cloud_url), context.token_url, token.refresh_token
        )
    except DrogueError as exc:
        raise UnexpectedClientError(f"Error when fetching a refresh token: {exc}") from exc
    context.set_oauth_token(new_token, now or datetime.now(timezone.utc))
    logger.info("Token successfully refreshed")
    return True
