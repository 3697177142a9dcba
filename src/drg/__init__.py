"""drg public surface."""

from drg.applications import ApplicationOperations
from drg.apply import apply
from drg.client import DrogueClient
from drg.devices import DeviceOperations
from drg.errors import (
    ConfigIssueError,
    ContextConflictError,
    ContextNotFoundError,
    DrogueError,
    InvalidInputError,
    KeyMismatchError,
    MissingApplicationError,
    NotFoundError,
    ServiceError,
    UnexpectedClientError,
)
from drg.outcome import BatchOutcome, SuccessWithJsonData, SuccessWithMessage, display

__all__ = [
    "DrogueError",
    "InvalidInputError",
    "NotFoundError",
    "ServiceError",
    "UnexpectedClientError",
    "ConfigIssueError",
    "ContextNotFoundError",
    "ContextConflictError",
    "MissingApplicationError",
    "KeyMismatchError",
    "DrogueClient",
    "ApplicationOperations",
    "DeviceOperations",
    "apply",
    "BatchOutcome",
    "SuccessWithMessage",
    "SuccessWithJsonData",
    "display",
]
