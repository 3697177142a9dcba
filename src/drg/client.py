"""HTTP client for the Drogue Cloud registry, admin, token and command APIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from drg.errors import ConfigIssueError, ServiceError, UnexpectedClientError

logger = logging.getLogger(__name__)

REGISTRY_API = "api/registry/v1alpha1"
ADMIN_API = "api/admin/v1alpha1"
TOKENS_API = "api/tokens/v1alpha1"
COMMAND_API = "api/command/v1alpha1"
CONSOLE_API = "api/console/v1alpha1"


def _segment(value: str) -> str:
    return quote(value, safe="")


def labels_query(labels: Optional[list[str]]) -> dict[str, str] | None:
    if not labels:
        return None
    return {"labels": ",".join(labels)}


@dataclass
class DrogueClient:
    """One session against a Drogue Cloud instance.

    ``base_url`` is the cloud API URL, used for discovery and console
    endpoints. ``registry_url`` serves the registry, admin, token and
    command APIs and defaults to ``base_url``.

    Lookups return ``None`` and updates/deletes return ``False`` when the
    service answers 404. Every other status of 400 or above raises
    :class:`ServiceError` with the service's status code.
    """

    base_url: str
    registry_url: str | None = None
    authorization: str | None = None
    timeout: float = 30.0
    retries: int = 2

    def __post_init__(self) -> None:
        self._session = requests.Session()
        # Only connection establishment is retried; a response is always final.
        retry = Retry(
            total=max(0, int(self.retries)),
            connect=max(0, int(self.retries)),
            read=0,
            status=0,
            backoff_factor=0.2,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        if self.registry_url is None:
            self.registry_url = self.base_url

    @classmethod
    def from_context(cls, context: Any, **kwargs: Any) -> "DrogueClient":
        return cls(
            base_url=str(context.drogue_cloud_url),
            registry_url=str(context.registry_url),
            authorization=context.authorization_header(),
            **kwargs,
        )

    def _url(self, path: str, *, base: str | None = None) -> str:
        root = base if base is not None else str(self.registry_url)
        return f"{root.rstrip('/')}/{path.lstrip('/')}"

    def _send(
        self,
        method: str,
        url: str,
        *,
        json_payload: Any = None,
        params: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> requests.Response:
        headers = {}
        if authenticated and self.authorization:
            headers["Authorization"] = self.authorization
        logger.debug("%s %s", method, url)
        try:
            return self._session.request(
                method,
                url,
                json=json_payload,
                params=params,
                headers=headers or None,
                timeout=self.timeout,
            )
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema) as exc:
            raise ConfigIssueError(f"Invalid url: {url}") from exc
        except requests.RequestException as exc:
            raise UnexpectedClientError(str(exc)) from exc

    @staticmethod
    def _raise_for_status(response: Any) -> None:
        if response.status_code < 400:
            return
        message: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            raw = body.get("message") or body.get("error")
            message = str(raw) if raw else None
        if not message:
            message = (getattr(response, "text", "") or "").strip() or f"HTTP {response.status_code}"
        raise ServiceError(message, status_code=response.status_code)

    @staticmethod
    def _json(response: Any) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedClientError(f"JSON parsing error: {exc}") from exc

    def _get(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
        base: str | None = None,
        authenticated: bool = True,
    ) -> Any | None:
        response = self._send(
            "GET", self._url(path, base=base), params=params, authenticated=authenticated
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return self._json(response)

    def _write(
        self,
        method: str,
        path: str,
        *,
        json_payload: Any = None,
        params: dict[str, str] | None = None,
    ) -> bool:
        response = self._send(method, self._url(path), json_payload=json_payload, params=params)
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return True

    def _create(self, path: str, payload: Any) -> Any | None:
        response = self._send("POST", self._url(path), json_payload=payload)
        self._raise_for_status(response)
        if not getattr(response, "content", b""):
            return None
        return self._json(response)

    # registry: applications

    def list_apps(self, labels: Optional[list[str]] = None) -> list[dict]:
        return self._get(f"{REGISTRY_API}/apps", params=labels_query(labels)) or []

    def get_app(self, app: str) -> dict | None:
        return self._get(f"{REGISTRY_API}/apps/{_segment(app)}")

    def create_app(self, application: dict) -> None:
        self._create(f"{REGISTRY_API}/apps", application)

    def update_app(self, application: dict) -> bool:
        name = application["metadata"]["name"]
        return self._write("PUT", f"{REGISTRY_API}/apps/{_segment(name)}", json_payload=application)

    def delete_app(self, app: str) -> bool:
        return self._write("DELETE", f"{REGISTRY_API}/apps/{_segment(app)}")

    # registry: devices

    def list_devices(self, app: str, labels: Optional[list[str]] = None) -> list[dict] | None:
        return self._get(
            f"{REGISTRY_API}/apps/{_segment(app)}/devices", params=labels_query(labels)
        )

    def get_device(self, app: str, device: str) -> dict | None:
        return self._get(f"{REGISTRY_API}/apps/{_segment(app)}/devices/{_segment(device)}")

    def create_device(self, device: dict) -> None:
        app = device["metadata"]["application"]
        self._create(f"{REGISTRY_API}/apps/{_segment(app)}/devices", device)

    def update_device(self, device: dict) -> bool:
        app = device["metadata"]["application"]
        name = device["metadata"]["name"]
        return self._write(
            "PUT",
            f"{REGISTRY_API}/apps/{_segment(app)}/devices/{_segment(name)}",
            json_payload=device,
        )

    def delete_device(self, app: str, device: str) -> bool:
        return self._write("DELETE", f"{REGISTRY_API}/apps/{_segment(app)}/devices/{_segment(device)}")

    # admin: members and ownership transfer

    def get_members(self, app: str) -> dict | None:
        return self._get(f"{ADMIN_API}/apps/{_segment(app)}/members")

    def update_members(self, app: str, members: dict) -> bool:
        return self._write("PUT", f"{ADMIN_API}/apps/{_segment(app)}/members", json_payload=members)

    def initiate_app_transfer(self, app: str, new_user: str) -> bool:
        return self._write(
            "PUT",
            f"{ADMIN_API}/apps/{_segment(app)}/transfer-ownership",
            json_payload={"newUser": new_user},
        )

    def cancel_app_transfer(self, app: str) -> bool:
        return self._write("DELETE", f"{ADMIN_API}/apps/{_segment(app)}/transfer-ownership")

    def accept_app_transfer(self, app: str) -> bool:
        return self._write("PUT", f"{ADMIN_API}/apps/{_segment(app)}/accept-ownership")

    # access tokens

    def list_tokens(self) -> list[dict]:
        return self._get(TOKENS_API) or []

    def create_token(self, description: str | None = None) -> dict:
        params = {"description": description} if description else None
        response = self._send("POST", self._url(TOKENS_API), params=params)
        self._raise_for_status(response)
        return self._json(response)

    def delete_token(self, prefix: str) -> bool:
        return self._write("DELETE", f"{TOKENS_API}/{_segment(prefix)}")

    # command

    def publish_command(self, app: str, device: str, command: str, payload: Any) -> bool:
        return self._write(
            "POST",
            f"{COMMAND_API}/apps/{_segment(app)}/devices/{_segment(device)}",
            json_payload=payload,
            params={"command": command},
        )

    # discovery

    def get_public_endpoints(self) -> dict | None:
        return self._get(".well-known/drogue-endpoints", base=self.base_url, authenticated=False)

    def get_authenticated_endpoints(self) -> dict | None:
        return self._get(f"{CONSOLE_API}/info", base=self.base_url)

    def get_cloud_version(self) -> dict | None:
        return self._get(".well-known/drogue-version", base=self.base_url, authenticated=False)

    def get_openid_configuration(self, issuer_url: str) -> dict | None:
        return self._get(".well-known/openid-configuration", base=issuer_url, authenticated=False)

    def exchange_token(self, token_url: str, form: dict[str, str]) -> dict:
        """POST an OAuth2 token request and return the token response."""
        logger.debug("POST %s grant_type=%s", token_url, form.get("grant_type"))
        try:
            response = self._session.post(
                token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UnexpectedClientError(str(exc)) from exc
        self._raise_for_status(response)
        return self._json(response)
