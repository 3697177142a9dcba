"""Round-trip a resource through the user's text editor."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Any

import yaml

from drg.errors import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "vi"


def _editor_command() -> list[str]:
    raw = os.getenv("VISUAL") or os.getenv("EDITOR") or DEFAULT_EDITOR
    return shlex.split(raw)


def edit_document(document: Any) -> Any:
    """Open ``document`` as YAML in an editor and return the edited value."""
    original = yaml.safe_dump(document, sort_keys=False)
    fd, name = tempfile.mkstemp(prefix="drg-", suffix=".yaml")
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(original)
        command = _editor_command() + [str(path)]
        logger.debug("Launching editor: %s", command)
        try:
            subprocess.run(command, check=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise InvalidInputError(
                "cannot open a text editor. You can manually edit the file then retry using --filename"
            ) from exc
        edited_text = path.read_text(encoding="utf-8")
    finally:
        path.unlink(missing_ok=True)

    if edited_text == original:
        raise InvalidInputError("No changes made")
    try:
        edited = yaml.safe_load(edited_text)
    except yaml.YAMLError as exc:
        raise InvalidInputError(f"Deserialization error: {exc}") from exc
    if edited == document:
        raise InvalidInputError("No changes made")
    return edited
