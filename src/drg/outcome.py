"""Operation outcomes and their text/JSON rendering."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO, Union

from pydantic import BaseModel

from drg.errors import DrogueError

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

_SENSITIVE_FIELDS = (
    "access_token",
    "refresh_token",
    "password",
    "secret",
    "token",
    "authorization",
)


@dataclass(frozen=True)
class SuccessWithMessage:
    message: str


@dataclass(frozen=True)
class SuccessWithJsonData:
    data: Any


Outcome = Union[SuccessWithMessage, SuccessWithJsonData]


@dataclass
class BatchOutcome:
    """Per-item results of a multi-document operation, in input order."""

    entries: list[tuple[str, Outcome | DrogueError]] = field(default_factory=list)

    def add(self, label: str, result: Outcome | DrogueError) -> None:
        self.entries.append((label, result))

    @property
    def failures(self) -> list[tuple[str, DrogueError]]:
        return [(label, result) for label, result in self.entries if isinstance(result, DrogueError)]

    @property
    def succeeded(self) -> bool:
        return not self.failures


Result = Union[SuccessWithMessage, SuccessWithJsonData, BatchOutcome, DrogueError]
PrettyPrinter = Callable[[Any, TextIO], None]


def sanitize_error_text(value: str) -> str:
    redacted = re.sub(r"(?i)(\b(?:Bearer|Basic)\s+)([A-Za-z0-9._~+/=-]+)", r"\1[REDACTED]", value)
    for name in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({name}\s*[=:]\s*)([^,\s]+)",
            r"\1[REDACTED]",
            redacted,
        )
    redacted = re.sub(r"(?i)([?&](?:secret|token|password)=)([^&\s]+)", r"\1[REDACTED]", redacted)
    return redacted


def to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", exclude_none=True)
    if isinstance(data, list):
        return [to_jsonable(item) for item in data]
    if isinstance(data, dict):
        return {key: to_jsonable(value) for key, value in data.items()}
    return data


def envelope(result: Outcome | DrogueError) -> dict[str, Any]:
    """Build the machine-readable envelope for a single result."""
    if isinstance(result, DrogueError):
        payload: dict[str, Any] = {
            "status": "failure",
            "message": sanitize_error_text(str(result)),
        }
        if result.status_code is not None:
            payload["http_status"] = result.status_code
        return payload
    if isinstance(result, SuccessWithMessage):
        return {"status": "success", "message": result.message}
    return {"status": "success", "data": to_jsonable(result.data)}


def _display_batch(
    batch: BatchOutcome,
    *,
    json_output: bool,
    stdout: TextIO,
    stderr: TextIO,
) -> int:
    total = len(batch.entries)
    failed = len(batch.failures)
    if json_output:
        outcomes = []
        for label, result in batch.entries:
            item = envelope(result)
            item["source"] = label
            outcomes.append(item)
        payload = {
            "status": "success" if batch.succeeded else "failure",
            "message": f"{total - failed} of {total} succeeded",
            "outcomes": outcomes,
        }
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        for label, result in batch.entries:
            if isinstance(result, DrogueError):
                print(f"{label}: error: {sanitize_error_text(str(result))}", file=stderr)
            elif isinstance(result, SuccessWithMessage):
                print(f"{label}: {result.message}", file=stdout)
            else:
                print(f"{label}: {json.dumps(to_jsonable(result.data), sort_keys=True)}", file=stdout)
        if failed:
            print(f"error: {failed} of {total} failed", file=stderr)
    return EXIT_SUCCESS if batch.succeeded else EXIT_FAILURE


def display(
    result: Result,
    *,
    json_output: bool,
    stdout: TextIO,
    stderr: TextIO,
    pretty: PrettyPrinter | None = None,
) -> int:
    """Render ``result`` and return the process exit code."""
    if isinstance(result, BatchOutcome):
        return _display_batch(result, json_output=json_output, stdout=stdout, stderr=stderr)

    if isinstance(result, DrogueError):
        if json_output:
            print(json.dumps(envelope(result), sort_keys=True), file=stdout)
        else:
            print(f"error: {sanitize_error_text(str(result))}", file=stderr)
        return EXIT_FAILURE

    if isinstance(result, SuccessWithMessage):
        if json_output:
            print(json.dumps(envelope(result), sort_keys=True), file=stdout)
        else:
            print(result.message, file=stdout)
        return EXIT_SUCCESS

    data = to_jsonable(result.data)
    if json_output:
        print(json.dumps(data, sort_keys=True), file=stdout)
    elif pretty is not None:
        pretty(data, stdout)
    else:
        print(json.dumps(data, indent=2, sort_keys=True), file=stdout)
    return EXIT_SUCCESS
