"""Personal access tokens."""

from __future__ import annotations

from drg.client import DrogueClient
from drg.errors import NotFoundError
from drg.outcome import SuccessWithJsonData, SuccessWithMessage


def list_tokens(client: DrogueClient) -> SuccessWithJsonData:
    return SuccessWithJsonData(client.list_tokens())


def create_token(client: DrogueClient, description: str | None = None) -> SuccessWithJsonData:
    return SuccessWithJsonData(client.create_token(description))


def delete_token(client: DrogueClient, prefix: str) -> SuccessWithMessage:
    if not client.delete_token(prefix):
        raise NotFoundError(f"No access token with prefix {prefix}")
    return SuccessWithMessage(f"Access token with prefix {prefix} deleted")
