"""Crash-safe file writes for snapshot files (checkpoints, state, envelopes).

Every write goes to a temporary sibling file which is then renamed over the
target, so readers only ever observe the previous or the new content.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def atomic_write_text(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """Write ``content`` to ``path`` via a temp file + rename.

    Parent directories are created as needed. The temp file is removed if the
    write fails before the rename.

    Raises:
        OSError: If the temp file cannot be written or renamed.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: str | Path, data: Any, indent: int | None = 2) -> None:
    """Serialize ``data`` as JSON and write it atomically to ``path``."""
    atomic_write_text(path, json.dumps(data, indent=indent, ensure_ascii=False) + "\n")


def read_json(path: str | Path) -> Any:
    """Read and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the content is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def read_json_or_none(path: str | Path) -> Any | None:
    """Read a JSON file, returning None when it is missing or unparsable."""
    try:
        return read_json(path)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring unreadable JSON file {path}: {e}")
        return None
