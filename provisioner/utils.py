from __future__ import annotations

import json
import stat
from pathlib import Path
from typing import Mapping


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_executable(path: str | Path, text: str) -> Path:
    """Write a script to disk and mark it executable for every class that can read it."""

    path = Path(path)
    ensure_directory(path.parent)
    path.write_text(text, encoding="utf-8")
    mode = path.stat().st_mode
    path.chmod(mode | ((mode & 0o444) >> 2) | stat.S_IXUSR)
    return path


def dump_json(
    path: str | Path,
    payload: Mapping[str, object],
    *,
    indent: int = 2,
    sort_keys: bool = True,
) -> None:
    """Write structured JSON to disk with a trailing newline for readability."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=indent, sort_keys=sort_keys) + "\n")
