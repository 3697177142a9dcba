"""Shared building blocks for registry operations."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import yaml

from drg.errors import InvalidInputError, NotFoundError
from drg.outcome import SuccessWithMessage

logger = logging.getLogger(__name__)


def read_modify_write(
    read: Callable[[], Optional[dict]],
    write: Callable[[dict], bool],
    modify: Callable[[dict], dict],
    message: str,
    *,
    not_found: Callable[[], NotFoundError] = NotFoundError,
) -> SuccessWithMessage:
    """Fetch a resource, transform it and write it back.

    A missing resource, either on read or because it vanished before the
    write, raises ``not_found()``. No attempt is retried, so a version
    conflict surfaces as a ``ServiceError`` with status 409.
    """
    current = read()
    if current is None:
        raise not_found()
    updated = modify(copy.deepcopy(current))
    if not write(updated):
        raise not_found()
    return SuccessWithMessage(message)


def merge_json(target: Any, patch: Any) -> Any:
    """Merge ``patch`` into ``target`` and return the result.

    Objects merge key by key, arrays gain the patch items they do not
    already contain, and anything else is replaced by the patch value.
    """
    if isinstance(target, dict) and isinstance(patch, dict):
        merged = dict(target)
        for key, value in patch.items():
            merged[key] = merge_json(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    if isinstance(target, list) and isinstance(patch, list):
        merged_list = list(target)
        for item in patch:
            if item not in merged_list:
                merged_list.append(copy.deepcopy(item))
        return merged_list
    return copy.deepcopy(patch)


def merge_at(document: dict, pointer: str, patch: Any) -> dict:
    """Merge ``patch`` at a slash separated ``pointer`` such as ``/spec``."""
    keys = [part for part in pointer.strip("/").split("/") if part]
    if not keys:
        return merge_json(document, patch)
    nested: Any = patch
    for key in reversed(keys):
        nested = {key: nested}
    return merge_json(document, nested)


def process_labels(labels: Iterable[str]) -> dict:
    """Turn ``key=value`` arguments into a metadata patch.

    A bare ``key`` sets an empty value, matching label selectors where
    only the presence of the key matters.
    """
    parsed: dict[str, str] = {}
    for raw in labels:
        key, sep, value = raw.partition("=")
        key = key.strip()
        if not key or (sep and "=" in value):
            raise InvalidInputError(f"invalid label {raw!r}, expected key=value")
        parsed[key] = value.strip()
    return {"metadata": {"labels": parsed}}


def parse_json_argument(raw: str, what: str = "data") -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Can't parse {what} args: '{raw}' into json: {exc}") from exc


def parse_document(text: str, source: str) -> Any:
    """Parse a JSON or YAML document supplied by the user."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as json_exc:
        try:
            parsed = yaml.safe_load(text)
        except yaml.YAMLError:
            raise InvalidInputError(f"Deserialization error in {source}: {json_exc}") from json_exc
        if not isinstance(parsed, dict):
            raise InvalidInputError(f"Deserialization error in {source}: {json_exc}") from json_exc
        return parsed


def load_document_file(path: str | Path) -> dict:
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidInputError(f"cannot read {file_path}: {exc}") from exc
    document = parse_document(text, str(file_path))
    if not isinstance(document, dict):
        raise InvalidInputError(f"{file_path} must contain a JSON object")
    return document


def resource_name(document: dict, default: str | None = None) -> str:
    """Return ``metadata.name``, falling back to ``default`` when it is absent."""
    metadata = document.get("metadata", {})
    if not isinstance(metadata, dict):
        raise InvalidInputError("metadata must be an object")
    name = metadata.get("name")
    if name is None and default:
        return default
    if not isinstance(name, str) or not name:
        raise InvalidInputError("missing metadata.name")
    return name
