"""Plain-text tables for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence, TextIO

from drg.endpoints import endpoint_address


def age_from_timestamp(value: Optional[str], now: Optional[datetime] = None) -> str:
    if not value:
        return ""
    try:
        created = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ""
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    age = (now or datetime.now(timezone.utc)) - created

    if age > timedelta(days=7):
        return f"{age.days}d"
    if age > timedelta(days=3):
        hours = (age - timedelta(days=age.days)) // timedelta(hours=1)
        return f"{age.days}d{hours}h"
    if age > timedelta(hours=2):
        return f"{age // timedelta(hours=1)}h"
    if age > timedelta(minutes=2):
        return f"{age // timedelta(minutes=1)}m"
    return f"{int(age.total_seconds())}s"


def print_table(headers: Sequence[str], rows: Iterable[Sequence[Any]], stdout: TextIO, sep: str = "  ") -> None:
    materialized = [[("" if cell is None else str(cell)) for cell in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in materialized:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    for row in [list(headers)] + materialized:
        line = sep.join(cell.ljust(widths[index]) for index, cell in enumerate(row))
        print(line.rstrip(), file=stdout)


def _metadata(resource: dict) -> dict:
    metadata = resource.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def apps_table(apps: list[dict], stdout: TextIO) -> None:
    rows = [
        (_metadata(app).get("name"), age_from_timestamp(_metadata(app).get("creationTimestamp")))
        for app in apps
    ]
    print_table(("NAME", "AGE"), rows, stdout)


def _firmware_columns(device: dict) -> tuple[str, str, str]:
    firmware = (device.get("status") or {}).get("firmware") or {}
    if not firmware:
        return ("", "", "")
    in_sync = firmware.get("inSync")
    update = firmware.get("update")
    if in_sync is True:
        state = "InSync"
    elif update:
        state = f"Updating ({update})"
    elif in_sync is False:
        state = "Unknown"
    else:
        state = ""
    return (state, str(firmware.get("current", "")), str(firmware.get("target", "")))


def devices_table(devices: list[dict], stdout: TextIO, *, wide: bool = False) -> None:
    headers: tuple[str, ...] = ("NAME", "AGE")
    if wide:
        headers += ("FIRMWARE", "CURRENT", "TARGET")
    rows = []
    for device in devices:
        metadata = _metadata(device)
        row: tuple[Any, ...] = (metadata.get("name"), age_from_timestamp(metadata.get("creationTimestamp")))
        if wide:
            row += _firmware_columns(device)
        rows.append(row)
    print_table(headers, rows, stdout)


def members_table(members: dict, stdout: TextIO) -> None:
    entries = members.get("members") or {}
    rows = [(user, (entry or {}).get("role", "")) for user, entry in sorted(entries.items())]
    print_table(("USER", "ROLE"), rows, stdout)


def tokens_table(tokens: list[dict], stdout: TextIO) -> None:
    rows = [
        (token.get("prefix"), age_from_timestamp(token.get("created")), token.get("description") or "")
        for token in tokens
    ]
    print_table(("TOKEN PREFIX", "AGE", "DESCRIPTION"), rows, stdout, sep=" | ")


def created_token(token: dict, stdout: TextIO) -> None:
    print("A new API Token was created:\n", file=stdout)
    print(token.get("token", ""), file=stdout)
    print("Make sure you save it, as you will not be able to display it again.", file=stdout)


def contexts_table(names: list[str], active: str, stdout: TextIO) -> None:
    rows = [("*" if name == active else "", name) for name in names]
    print_table(("", "NAME"), rows, stdout)


def endpoints_table(endpoints: dict, stdout: TextIO) -> None:
    rows = []
    for name, details in endpoints.items():
        address = endpoint_address(details)
        if address:
            rows.append((name, address))
    print_table(("NAME", "URL"), rows, stdout)


def transfer_guide(data: dict, stdout: TextIO) -> None:
    app = data.get("app", "")
    print("Application transfer initiated", file=stdout)
    print(f'The new user can accept the transfer with "drg transfer accept {app}"', file=stdout)
    console = data.get("console")
    if console:
        print("Alternatively you can share this link with the new owner:", file=stdout)
        print(console, file=stdout)
