"""Create-or-update resources from JSON/YAML documents.

Each input document is planned and applied on its own: a failure on one
document is recorded in the batch result and the remaining documents are
still processed. Nothing is rolled back.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, TextIO

from drg.client import DrogueClient
from drg.errors import DrogueError, InvalidInputError, MissingApplicationError, NotFoundError
from drg.operations import parse_document
from drg.outcome import BatchOutcome, SuccessWithMessage

logger = logging.getLogger(__name__)

STDIN_PATH = "-"


class ApplyAction(str, Enum):
    UPDATE = "update"
    CREATE = "create"
    REJECTED = "rejected"


@dataclass
class ApplyDocument:
    source: str
    document: dict

    @property
    def metadata(self) -> dict:
        metadata = self.document.get("metadata")
        if not isinstance(metadata, dict):
            raise InvalidInputError(f"{self.source} has no metadata section")
        return metadata

    @property
    def name(self) -> str:
        name = self.metadata.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidInputError(f"{self.source} has no metadata.name")
        return name

    @property
    def application(self) -> Optional[str]:
        application = self.metadata.get("application")
        return str(application) if application else None

    @property
    def is_device(self) -> bool:
        return self.application is not None

    @property
    def kind(self) -> str:
        return "device" if self.is_device else "app"


@dataclass
class ApplyPlan:
    action: ApplyAction
    resource_version: Optional[str] = None
    reason: Optional[DrogueError] = None


def _expand_paths(paths: Iterable[str]) -> list[str]:
    expanded: list[str] = []
    for raw in paths:
        if raw == STDIN_PATH:
            expanded.append(raw)
            continue
        path = Path(raw)
        if path.is_dir():
            for child in sorted(path.iterdir()):
                if child.name.startswith("."):
                    logger.debug("path %s is a hidden file, skipping.", child)
                elif child.is_dir():
                    logger.debug("path %s is a subdirectory, skipping.", child)
                else:
                    expanded.append(str(child))
        else:
            expanded.append(raw)
    return expanded


def load_documents(
    paths: Iterable[str], *, stdin: TextIO | None = None
) -> list[tuple[str, ApplyDocument | DrogueError]]:
    """Read every input; unreadable or malformed inputs become errors in place."""
    loaded: list[tuple[str, ApplyDocument | DrogueError]] = []
    for source in _expand_paths(paths):
        try:
            if source == STDIN_PATH:
                text = (stdin or sys.stdin).read()
                label = "stdin"
            else:
                label = source
                try:
                    text = Path(source).read_text(encoding="utf-8")
                except OSError as exc:
                    raise InvalidInputError(f"cannot read {source}: {exc}") from exc
            document = parse_document(text, label)
            if not isinstance(document, dict):
                raise InvalidInputError(f"{label} must contain a JSON object")
            loaded.append((label, ApplyDocument(source=label, document=document)))
        except DrogueError as exc:
            logger.warning("%s", exc)
            loaded.append((source if source != STDIN_PATH else "stdin", exc))
    return loaded


def plan_document(client: DrogueClient, doc: ApplyDocument) -> ApplyPlan:
    if doc.is_device:
        app = doc.application or ""
        current = client.get_device(app, doc.name)
        if current is not None:
            return ApplyPlan(ApplyAction.UPDATE, current.get("metadata", {}).get("resourceVersion"))
        if client.get_app(app) is None:
            return ApplyPlan(ApplyAction.REJECTED, reason=MissingApplicationError(app))
        return ApplyPlan(ApplyAction.CREATE)

    current = client.get_app(doc.name)
    if current is not None:
        return ApplyPlan(ApplyAction.UPDATE, current.get("metadata", {}).get("resourceVersion"))
    return ApplyPlan(ApplyAction.CREATE)


def apply_document(client: DrogueClient, doc: ApplyDocument) -> SuccessWithMessage:
    plan = plan_document(client, doc)
    logger.info("%s %s %s", plan.action.value, doc.kind, doc.name)
    if plan.action is ApplyAction.REJECTED:
        raise plan.reason or InvalidInputError(f"{doc.kind} {doc.name} was rejected")

    if plan.action is ApplyAction.UPDATE:
        if plan.resource_version:
            doc.metadata["resourceVersion"] = plan.resource_version
        updated = client.update_device(doc.document) if doc.is_device else client.update_app(doc.document)
        if not updated:
            raise NotFoundError(f"{doc.kind} {doc.name} disappeared before it could be updated")
        return SuccessWithMessage(f"Success updating {doc.kind} {doc.name}")

    if doc.is_device:
        client.create_device(doc.document)
    else:
        client.create_app(doc.document)
    return SuccessWithMessage(f"Success creating {doc.kind} {doc.name}")


def apply(client: DrogueClient, paths: Iterable[str], *, stdin: TextIO | None = None) -> BatchOutcome:
    batch = BatchOutcome()
    for label, loaded in load_documents(paths, stdin=stdin):
        if isinstance(loaded, DrogueError):
            batch.add(label, loaded)
            continue
        try:
            batch.add(label, apply_document(client, loaded))
        except DrogueError as exc:
            batch.add(label, exc)
    return batch
