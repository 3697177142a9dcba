"""Send commands to devices."""

from __future__ import annotations

import logging
from typing import Any

from drg.client import DrogueClient
from drg.errors import NotFoundError
from drg.outcome import SuccessWithMessage

logger = logging.getLogger(__name__)


def send_command(
    client: DrogueClient, app: str, device: str, command: str, body: Any
) -> SuccessWithMessage:
    logger.info("Sending command %s to %s/%s", command, app, device)
    if not client.publish_command(app, device, command, body):
        raise NotFoundError()
    return SuccessWithMessage("Command accepted")
