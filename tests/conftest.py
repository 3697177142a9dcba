from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest
import yaml

from drg.errors import ServiceError

API_URL = "https://api.example.com"
REGISTRY_URL = "https://registry.example.com"
ISSUER_URL = "https://sso.example.com/realms/drogue"
AUTH_URL = f"{ISSUER_URL}/protocol/openid-connect/auth"
TOKEN_URL = f"{ISSUER_URL}/protocol/openid-connect/token"


class FakeCloud:
    """In-memory registry shared by every client built during one test."""

    def __init__(self) -> None:
        self.apps: dict[str, dict] = {}
        self.devices: dict[tuple[str, str], dict] = {}
        self.members: dict[str, dict] = {}
        self.tokens: list[dict] = []
        self.commands: list[tuple[str, str, str, Any]] = []
        self.calls: list[str] = []
        self.clients: list[FakeClient] = []
        self.public_endpoints: dict | None = {
            "issuer_url": ISSUER_URL,
            "registry": {"url": REGISTRY_URL},
        }
        self.authenticated_endpoints: dict = {
            "api": API_URL,
            "registry": {"url": REGISTRY_URL},
            "websocket_integration": {"url": "wss://ws.example.com"},
            "mqtt": {"host": "mqtt.example.com", "port": 443},
        }
        self.accepted_authorization: str | None = None
        self.version = "0.10.0"

    def client_class(self) -> type["FakeClient"]:
        cloud = self

        class BoundClient(FakeClient):
            pass

        BoundClient.cloud = cloud
        return BoundClient


class FakeClient:
    cloud: FakeCloud

    def __init__(
        self,
        base_url: str,
        registry_url: str | None = None,
        authorization: str | None = None,
        timeout: float = 30.0,
        retries: int = 2,
    ) -> None:
        self.base_url = base_url
        self.registry_url = registry_url or base_url
        self.authorization = authorization
        self.cloud.clients.append(self)

    @classmethod
    def from_context(cls, context: Any, **kwargs: Any) -> "FakeClient":
        return cls(
            base_url=context.drogue_cloud_url,
            registry_url=context.registry_url,
            authorization=context.authorization_header(),
        )

    def _record(self, call: str) -> None:
        self.cloud.calls.append(call)

    # applications

    def list_apps(self, labels: list[str] | None = None) -> list[dict]:
        self._record("list_apps")
        return [copy.deepcopy(app) for app in self.cloud.apps.values()]

    def get_app(self, app: str) -> dict | None:
        self._record(f"get_app {app}")
        found = self.cloud.apps.get(app)
        return copy.deepcopy(found) if found is not None else None

    def create_app(self, application: dict) -> None:
        name = application["metadata"]["name"]
        self._record(f"create_app {name}")
        if name in self.cloud.apps:
            raise ServiceError("Application already exists", status_code=409)
        self.cloud.apps[name] = copy.deepcopy(application)

    def update_app(self, application: dict) -> bool:
        name = application["metadata"]["name"]
        self._record(f"update_app {name}")
        if name not in self.cloud.apps:
            return False
        self.cloud.apps[name] = copy.deepcopy(application)
        return True

    def delete_app(self, app: str) -> bool:
        self._record(f"delete_app {app}")
        return self.cloud.apps.pop(app, None) is not None

    # devices

    def list_devices(self, app: str, labels: list[str] | None = None) -> list[dict] | None:
        if app not in self.cloud.apps:
            return None
        return [copy.deepcopy(doc) for (owner, _), doc in self.cloud.devices.items() if owner == app]

    def get_device(self, app: str, device: str) -> dict | None:
        self._record(f"get_device {app}/{device}")
        found = self.cloud.devices.get((app, device))
        return copy.deepcopy(found) if found is not None else None

    def create_device(self, device: dict) -> None:
        app = device["metadata"]["application"]
        name = device["metadata"]["name"]
        self._record(f"create_device {app}/{name}")
        if app not in self.cloud.apps:
            raise ServiceError(f"Application {app} not found", status_code=404)
        self.cloud.devices[(app, name)] = copy.deepcopy(device)

    def update_device(self, device: dict) -> bool:
        key = (device["metadata"]["application"], device["metadata"]["name"])
        self._record(f"update_device {key[0]}/{key[1]}")
        if key not in self.cloud.devices:
            return False
        self.cloud.devices[key] = copy.deepcopy(device)
        return True

    def delete_device(self, app: str, device: str) -> bool:
        self._record(f"delete_device {app}/{device}")
        return self.cloud.devices.pop((app, device), None) is not None

    # admin

    def get_members(self, app: str) -> dict | None:
        if app not in self.cloud.apps:
            return None
        return copy.deepcopy(self.cloud.members.get(app, {"members": {}}))

    def update_members(self, app: str, members: dict) -> bool:
        if app not in self.cloud.apps:
            return False
        self.cloud.members[app] = copy.deepcopy(members)
        return True

    def initiate_app_transfer(self, app: str, new_user: str) -> bool:
        self._record(f"transfer {app} {new_user}")
        return app in self.cloud.apps

    def cancel_app_transfer(self, app: str) -> bool:
        return app in self.cloud.apps

    def accept_app_transfer(self, app: str) -> bool:
        return app in self.cloud.apps

    # tokens

    def list_tokens(self) -> list[dict]:
        return copy.deepcopy(self.cloud.tokens)

    def create_token(self, description: str | None = None) -> dict:
        token = {"prefix": f"drg_{len(self.cloud.tokens)}", "token": "drg_secret_value"}
        entry = {"prefix": token["prefix"], "created": "2026-01-01T00:00:00Z"}
        if description:
            entry["description"] = description
        self.cloud.tokens.append(entry)
        return token

    def delete_token(self, prefix: str) -> bool:
        before = len(self.cloud.tokens)
        self.cloud.tokens = [token for token in self.cloud.tokens if token["prefix"] != prefix]
        return len(self.cloud.tokens) != before

    # command

    def publish_command(self, app: str, device: str, command: str, payload: Any) -> bool:
        if (app, device) not in self.cloud.devices:
            return False
        self.cloud.commands.append((app, device, command, payload))
        return True

    # discovery

    def get_public_endpoints(self) -> dict | None:
        self._record(f"public_endpoints {self.base_url}")
        return copy.deepcopy(self.cloud.public_endpoints)

    def get_authenticated_endpoints(self) -> dict | None:
        self._record(f"authenticated_endpoints {self.base_url}")
        expected = self.cloud.accepted_authorization
        if expected is not None and self.authorization != expected:
            raise ServiceError("Unauthorized", status_code=401)
        return copy.deepcopy(self.cloud.authenticated_endpoints)

    def get_cloud_version(self) -> dict | None:
        return {"version": self.cloud.version}

    def get_openid_configuration(self, issuer_url: str) -> dict | None:
        self._record(f"openid_configuration {issuer_url}")
        return {"authorization_endpoint": AUTH_URL, "token_endpoint": TOKEN_URL}

    def exchange_token(self, token_url: str, form: dict[str, str]) -> dict:
        self._record(f"exchange_token {form.get('grant_type')}")
        return {
            "access_token": "fresh-access",
            "refresh_token": "fresh-refresh",
            "expires_in": 300,
            "token_type": "Bearer",
        }


@pytest.fixture
def cloud(monkeypatch) -> FakeCloud:
    fake = FakeCloud()
    monkeypatch.setattr("drg.cli.main.DrogueClient", fake.client_class())
    monkeypatch.setattr("drg.stream.DrogueClient", fake.client_class())
    return fake


def context_entry(name: str = "default", **overrides: Any) -> dict:
    entry = {
        "name": name,
        "drogue_cloud_url": API_URL,
        "token": {"type": "access_token", "id": "alice", "token": "secret-token"},
        "token_url": TOKEN_URL,
        "auth_url": AUTH_URL,
        "registry_url": REGISTRY_URL,
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def config_path(tmp_path, monkeypatch) -> Path:
    """A config file holding one active access-token context."""
    for name in ("DRGCFG", "DRG_CONTEXT", "DRG_APP"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "drg_config.yaml"
    path.write_text(
        yaml.safe_dump({"active_context": "default", "contexts": [context_entry()]}),
        encoding="utf-8",
    )
    return path
