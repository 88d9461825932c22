from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

from inboxd.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def read_json(path: Path, default: Callable[[], T]) -> Any:
    """Return the parsed file, or default() when it is missing or unreadable."""
    if not path.exists():
        return default()
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return default()


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON next to the target, then rename over it.

    Readers see either the previous file or the complete new one.
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_name = fh.name
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise StorageError(f"Failed to write {path}: {exc}") from exc
