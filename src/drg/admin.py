"""Application membership and ownership transfer."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

from drg.client import DrogueClient
from drg.editor import edit_document
from drg.errors import DrogueError, NotFoundError
from drg.operations import read_modify_write
from drg.outcome import SuccessWithJsonData, SuccessWithMessage

logger = logging.getLogger(__name__)

MEMBERS_UPDATED = "Application members updated"


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    READER = "reader"


def _app_not_found(app: str) -> Callable[[], NotFoundError]:
    return lambda: NotFoundError(f"Application {app} not found")


def _update_members(
    client: DrogueClient, app: str, modify: Callable[[dict], dict]
) -> SuccessWithMessage:
    return read_modify_write(
        read=lambda: client.get_members(app),
        write=lambda members: client.update_members(app, members),
        modify=modify,
        message=MEMBERS_UPDATED,
        not_found=_app_not_found(app),
    )


def member_list(client: DrogueClient, app: str) -> SuccessWithJsonData:
    members = client.get_members(app)
    if members is None:
        raise _app_not_found(app)()
    return SuccessWithJsonData(members)


def member_add(client: DrogueClient, app: str, user: str, role: Role) -> SuccessWithMessage:
    def add(members: dict) -> dict:
        members.setdefault("members", {})[user] = {"role": Role(role).value}
        return members

    return _update_members(client, app, add)


def member_delete(client: DrogueClient, app: str, user: str) -> SuccessWithMessage:
    def remove(members: dict) -> dict:
        members.setdefault("members", {}).pop(user, None)
        return members

    return _update_members(client, app, remove)


def member_edit(
    client: DrogueClient, app: str, editor: Callable[[Any], Any] = edit_document
) -> SuccessWithMessage:
    return _update_members(client, app, editor)


def console_transfer_link(client: DrogueClient, app: str) -> str | None:
    """Console URL the new owner can open, when the cloud advertises one."""
    try:
        endpoints = client.get_authenticated_endpoints()
    except DrogueError as exc:
        logger.info("Cannot fetch console endpoint: %s", exc)
        return None
    console = (endpoints or {}).get("console")
    if not console:
        return None
    return f"{console.rstrip('/')}/transfer/{quote(app, safe='')}"


def transfer_app(client: DrogueClient, app: str, user: str) -> SuccessWithJsonData:
    if not client.initiate_app_transfer(app, user):
        raise _app_not_found(app)()
    data: dict[str, str] = {"app": app}
    link = console_transfer_link(client, app)
    if link:
        data["console"] = link
    return SuccessWithJsonData(data)


def cancel_transfer(client: DrogueClient, app: str) -> SuccessWithMessage:
    if not client.cancel_app_transfer(app):
        raise _app_not_found(app)()
    return SuccessWithMessage("Application transfer canceled")


def accept_transfer(client: DrogueClient, app: str) -> SuccessWithMessage:
    if not client.accept_app_transfer(app):
        raise _app_not_found(app)()
    return SuccessWithMessage(
        "Application transfer completed.\nYou are now the owner of the application"
    )
