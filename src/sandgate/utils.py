"""Small filesystem helpers shared by both gates."""

from __future__ import annotations

import json
import os
import secrets
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write JSON data to a file using atomic rename (tmp → final).

    Readers either see the old content or the complete new content, never
    a partial write. The temp name is unique per writer so two processes
    writing the same key cannot clobber each other's temp file.

    Creates parent directories if they don't exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}-{secrets.token_hex(4)}.tmp")
    text = json.dumps(data, indent=indent)
    if indent is not None:
        text += "\n"
    try:
        tmp.write_text(text)
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def read_json(path: Path) -> Any | None:
    """Return the decoded JSON content of *path*, or None if it does not exist.

    Raises ``json.JSONDecodeError`` / ``OSError`` for unreadable files so
    callers can decide how to degrade.
    """
    if not path.exists():
        return None
    return json.loads(path.read_text())
