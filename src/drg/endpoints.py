"""Service discovery against a Drogue Cloud instance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

from drg.client import DrogueClient
from drg.errors import ConfigIssueError, InvalidInputError, NotFoundError, UnexpectedClientError

logger = logging.getLogger(__name__)

COMPATIBLE_DROGUE_VERSION = "0.10.0"


@dataclass(frozen=True)
class ServiceEndpoints:
    issuer_url: str
    registry_url: str
    auth_url: str
    token_url: str


def normalize_url(raw: str) -> str:
    """Validate a user supplied URL, defaulting to https when no scheme is given."""
    value = raw.strip()
    parsed = urlparse(value)
    if not parsed.scheme:
        value = f"https://{value}"
        parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidInputError(f"URL args: '{raw}' is not valid")
    return value


def _require_url(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise UnexpectedClientError(f"Missing {what} in drogue-cloud endpoints")
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigIssueError(f"Invalid url: {value}")
    return value


def get_drogue_endpoints(client: DrogueClient) -> tuple[str, str]:
    """Return ``(issuer_url, registry_url)`` advertised by the cloud."""
    endpoints = client.get_public_endpoints()
    if endpoints is None:
        raise UnexpectedClientError("Error fetching drogue-cloud endpoints.")
    registry = endpoints.get("registry") or {}
    issuer = _require_url(endpoints.get("issuer_url"), "SSO information")
    registry_url = _require_url(registry.get("url") if isinstance(registry, dict) else None, "registry url")
    return issuer, registry_url


def get_auth_and_token_endpoints(client: DrogueClient, issuer_url: str) -> tuple[str, str]:
    configuration = client.get_openid_configuration(issuer_url)
    if configuration is None:
        raise UnexpectedClientError("Can't retrieve openid-connect endpoints details")
    auth_url = configuration.get("authorization_endpoint")
    token_url = configuration.get("token_endpoint")
    if not auth_url or not token_url:
        raise UnexpectedClientError(
            "Missing `authorization_endpoint` or `token_endpoint` in drogue openid-connect configuration"
        )
    return _require_url(auth_url, "authorization endpoint"), _require_url(token_url, "token endpoint")


def discover(client: DrogueClient) -> ServiceEndpoints:
    issuer_url, registry_url = get_drogue_endpoints(client)
    auth_url, token_url = get_auth_and_token_endpoints(client, issuer_url)
    logger.info("Discovered registry %s and issuer %s", registry_url, issuer_url)
    return ServiceEndpoints(
        issuer_url=issuer_url,
        registry_url=registry_url,
        auth_url=auth_url,
        token_url=token_url,
    )


def get_authenticated_endpoints(client: DrogueClient) -> dict:
    endpoints = client.get_authenticated_endpoints()
    if endpoints is None:
        raise UnexpectedClientError("Error fetching drogue-cloud endpoints.")
    return endpoints


def endpoint_address(details: Any) -> Optional[str]:
    """Flatten one endpoint entry into a printable address."""
    if isinstance(details, str):
        return details
    if not isinstance(details, dict):
        return None
    if "url" in details:
        return str(details["url"])
    host = details.get("host")
    if not host:
        return None
    port = details.get("port")
    return f"{host}:{port}" if port else str(host)


def select_endpoint(endpoints: dict, service: str) -> str:
    if service not in endpoints:
        raise NotFoundError("Service not found in endpoints list.")
    address = endpoint_address(endpoints[service])
    if address is None:
        raise NotFoundError(f"Service {service} has no address")
    return address


def get_websocket_endpoint(client: DrogueClient) -> str:
    endpoints = get_authenticated_endpoints(client)
    integration = endpoints.get("websocket_integration")
    address = endpoint_address(integration)
    if not address:
        raise UnexpectedClientError("No `websocket_integration` service in drogue endpoints list")
    return address


def get_cloud_version(client: DrogueClient) -> str:
    payload = client.get_cloud_version()
    if not payload or "version" not in payload:
        raise UnexpectedClientError("Error retrieving drogue-cloud version")
    return str(payload["version"])
