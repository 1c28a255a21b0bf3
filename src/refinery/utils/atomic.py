"""
Atomic JSON file helpers.

Writers go through a temp file in the destination directory followed by
``os.replace`` (or ``os.link`` for create-if-absent), so readers only ever
see complete documents.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any


def _temp_path(file_path: Path) -> Path:
    return file_path.with_name(f".{file_path.name}.tmp.{uuid.uuid4().hex}")


def _write_temp(temp_path: Path, data: Any) -> None:
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True, default=str)
        f.flush()
        os.fsync(f.fileno())


def fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a rename survives a crash."""
    if os.name == "nt":
        return
    dir_fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def atomic_write_json(file_path: Path, data: Any) -> None:
    """Replace ``file_path`` with ``data`` atomically."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path(file_path)
    try:
        _write_temp(temp_path, data)
        os.replace(temp_path, file_path)
        fsync_dir(file_path.parent)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def atomic_create_json(file_path: Path, data: Any) -> bool:
    """
    Create ``file_path`` with ``data`` only if it does not exist yet.

    Returns False when the file already exists. The content is fully written
    before the name appears, so a concurrent reader never sees a partial file.
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path(file_path)
    try:
        _write_temp(temp_path, data)
        try:
            os.link(temp_path, file_path)
        except FileExistsError:
            return False
        fsync_dir(file_path.parent)
        return True
    finally:
        if temp_path.exists():
            temp_path.unlink()


def read_json_file(file_path: Path) -> Any:
    """
    Read a JSON document.

    Raises FileNotFoundError when absent and ValueError when the content is
    not valid JSON; callers decide how to treat either.
    """
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)
