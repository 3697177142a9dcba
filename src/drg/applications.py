"""Application operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from drg.certificates import IssuedCertificate, SignAlgo, TrustAnchorEntry, issue_trust_anchor
from drg.certificates.schemas import CERT_VALIDITY_DAYS
from drg.client import DrogueClient
from drg.crypto.keys import PrivateKey
from drg.editor import edit_document
from drg.errors import InvalidInputError, NotFoundError
from drg.operations import merge_at, merge_json, process_labels, read_modify_write, resource_name
from drg.outcome import SuccessWithJsonData, SuccessWithMessage

logger = logging.getLogger(__name__)

UPDATED = "Application updated"


def _app_not_found(name: str) -> Callable[[], NotFoundError]:
    return lambda: NotFoundError(f"Application {name} not found")


def _keep_resource_version(current: dict, replacement: dict) -> dict:
    version = current.get("metadata", {}).get("resourceVersion")
    metadata = replacement.setdefault("metadata", {})
    if version and "resourceVersion" not in metadata:
        metadata["resourceVersion"] = version
    return replacement


@dataclass
class ApplicationOperations:
    client: DrogueClient

    def create(
        self,
        name: str,
        *,
        spec: Optional[dict] = None,
        document: Optional[dict] = None,
    ) -> SuccessWithMessage:
        payload = document if document is not None else {"metadata": {"name": name}, "spec": spec or {}}
        resource_name(payload, default=name)
        payload.setdefault("metadata", {}).setdefault("name", name)
        self.client.create_app(payload)
        return SuccessWithMessage("Application created")

    def read(self, name: str) -> SuccessWithJsonData:
        app = self.client.get_app(name)
        if app is None:
            raise _app_not_found(name)()
        return SuccessWithJsonData(app)

    def list(self, labels: Optional[list[str]] = None) -> SuccessWithJsonData:
        return SuccessWithJsonData(self.client.list_apps(labels))

    def delete(self, name: str, *, ignore_missing: bool = False) -> SuccessWithMessage:
        if self.client.delete_app(name):
            return SuccessWithMessage("Application deleted")
        if ignore_missing:
            return SuccessWithMessage("No application to delete, ignoring.")
        raise _app_not_found(name)()

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
        """Update an existing application.

        ``document`` replaces the application, ``spec`` is merged at
        ``/spec``; without either the application is opened in an editor.
        """
        if document is not None:
            target = resource_name(document, default=name)
            if target != name:
                raise InvalidInputError(f"document names {target}, expected {name}")
            return self._update(name, lambda current: _keep_resource_version(current, document), UPDATED)
        if spec is not None:
            return self._update(name, lambda current: merge_at(current, "/spec", spec), UPDATED)
        return self._update(name, editor, UPDATED)

    def add_labels(self, name: str, labels: Iterable[str]) -> SuccessWithMessage:
        return self.merge_in(name, process_labels(labels))

    def add_trust_anchor(
        self,
        name: str,
        *,
        days: int = CERT_VALIDITY_DAYS,
        algorithm: SignAlgo | None = None,
        key: PrivateKey | None = None,
    ) -> tuple[SuccessWithMessage, IssuedCertificate]:
        """Issue a trust anchor and make it the application's only anchor."""
        issued = issue_trust_anchor(name, days=days, algorithm=algorithm, key=key)
        entry = TrustAnchorEntry.from_pem(issued.certificate_pem)

        def install(current: dict) -> dict:
            spec = current.setdefault("spec", {})
            spec["trustAnchors"] = {"anchors": [entry.model_dump()]}
            return current

        outcome = self._update(name, install, UPDATED)
        return outcome, issued

    def get_trust_anchor(self, name: str) -> TrustAnchorEntry:
        app = self.client.get_app(name)
        if app is None:
            raise _app_not_found(name)()
        anchors = (app.get("spec") or {}).get("trustAnchors", {}).get("anchors") or []
        if not anchors:
            raise InvalidInputError("No trust anchors for this app")
        return TrustAnchorEntry.model_validate(anchors[0])

    def _update(self, name: str, modify: Callable[[dict], dict], message: str) -> SuccessWithMessage:
        return read_modify_write(
            read=lambda: self.client.get_app(name),
            write=self.client.update_app,
            modify=modify,
            message=message,
            not_found=_app_not_found(name),
        )
