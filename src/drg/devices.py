"""Device operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from passlib.hash import sha512_crypt

from drg.certificates import IssuedCertificate, SignAlgo, device_subject_alias, issue_device_certificate
from drg.certificates.schemas import CERT_VALIDITY_DAYS
from drg.client import DrogueClient
from drg.crypto.keys import PrivateKey
from drg.editor import edit_document
from drg.errors import InvalidInputError, NotFoundError
from drg.operations import merge_at, merge_json, process_labels, read_modify_write, resource_name
from drg.outcome import SuccessWithJsonData, SuccessWithMessage

logger = logging.getLogger(__name__)

UPDATED = "Device updated"
# crypt(3) default; the hash then carries no rounds= field
SHA512_ROUNDS = 5000


def _device_not_found(app: str, device: str) -> Callable[[], NotFoundError]:
    return lambda: NotFoundError(f"Device {device} not found in application {app}")


@dataclass
class DeviceOperations:
    client: DrogueClient
    app: str

    def create(
        self,
        name: str,
        *,
        spec: Optional[dict] = None,
        document: Optional[dict] = None,
        certificate_alias: bool = False,
    ) -> SuccessWithMessage:
        payload = document if document is not None else {"metadata": {}, "spec": spec or {}}
        resource_name(payload, default=name)
        metadata = payload.setdefault("metadata", {})
        metadata.setdefault("name", name)
        metadata.setdefault("application", self.app)
        if certificate_alias:
            payload = merge_json(payload, {"spec": {"alias": [device_subject_alias(self.app, name)]}})
        self.client.create_device(payload)
        return SuccessWithMessage("Device created")

    def read(self, name: str) -> SuccessWithJsonData:
        device = self.client.get_device(self.app, name)
        if device is None:
            raise _device_not_found(self.app, name)()
        return SuccessWithJsonData(device)

    def list(self, labels: Optional[list[str]] = None) -> SuccessWithJsonData:
        devices = self.client.list_devices(self.app, labels)
        if devices is None:
            raise NotFoundError(f"Application {self.app} not found")
        return SuccessWithJsonData(devices)

    def delete(self, name: str, *, ignore_missing: bool = False) -> SuccessWithMessage:
        if self.client.delete_device(self.app, name):
            return SuccessWithMessage("Device deleted")
        if ignore_missing:
            return SuccessWithMessage("No device to delete, ignoring.")
        raise _device_not_found(self.app, name)()

    def merge_in(self, name: str, patch: dict, message: str = UPDATED) -> SuccessWithMessage:
        return self._update(name, lambda current: merge_json(current, patch), message)

    def edit(
        self,
        name: str,
        *,
        document: Optional[dict] = None,
        spec: Any = None,
        editor: Callable[[Any], Any] = edit_document,
    ) -> SuccessWithMessage:
        if document is not None:
            target = resource_name(document, default=name)
            if target != name:
                raise InvalidInputError(f"document names {target}, expected {name}")

            def replace(current: dict) -> dict:
                metadata = document.setdefault("metadata", {})
                metadata.setdefault("application", self.app)
                version = current.get("metadata", {}).get("resourceVersion")
                if version:
                    metadata.setdefault("resourceVersion", version)
                return document

            return self._update(name, replace, UPDATED)
        if spec is not None:
            return self._update(name, lambda current: merge_at(current, "/spec", spec), UPDATED)
        return self._update(name, editor, UPDATED)

    def add_labels(self, name: str, labels: Iterable[str]) -> SuccessWithMessage:
        return self.merge_in(name, process_labels(labels))

    def set_gateway(self, name: str, gateway: str) -> SuccessWithMessage:
        return self.merge_in(name, {"spec": {"gatewaySelector": {"matchNames": [gateway]}}})

    def set_password(self, name: str, password: str, username: str | None = None) -> SuccessWithMessage:
        hashed = {"sha512": sha512_crypt.using(rounds=SHA512_ROUNDS).hash(password)}
        if username:
            credential: dict = {"user": {"username": username, "password": hashed, "unique": False}}
        else:
            credential = {"pass": hashed}
        return self.merge_in(name, {"spec": {"credentials": {"credentials": [credential]}}})

    def add_alias(self, name: str, alias: str) -> SuccessWithMessage:
        return self.merge_in(name, {"spec": {"alias": [alias]}})

    def create_certificate(
        self,
        name: str,
        *,
        ca_key: bytes,
        ca_certificate: bytes,
        days: int = CERT_VALIDITY_DAYS,
        algorithm: SignAlgo | None = None,
        key: PrivateKey | None = None,
    ) -> tuple[SuccessWithMessage, IssuedCertificate]:
        """Sign a device certificate and register its subject as an alias."""
        issued = issue_device_certificate(
            self.app,
            name,
            ca_key,
            ca_certificate,
            days=days,
            algorithm=algorithm,
            key=key,
        )
        outcome = self.add_alias(name, device_subject_alias(self.app, name))
        return outcome, issued

    def _update(self, name: str, modify: Callable[[dict], dict], message: str) -> SuccessWithMessage:
        return read_modify_write(
            read=lambda: self.client.get_device(self.app, name),
            write=self.client.update_device,
            modify=modify,
            message=message,
            not_found=_device_not_found(self.app, name),
        )
