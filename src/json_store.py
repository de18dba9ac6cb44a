"""
Locked, atomic JSON file access shared by the cache and the profile store.
"""
import fcntl
import json
from pathlib import Path
from typing import Any, Optional


def read_json(path: Path) -> Optional[Any]:
    """Load JSON from a file.

    Args:
        path: File to read

    Returns:
        Parsed data, or None if the file is missing or unreadable
    """
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError, UnicodeDecodeError):
        return None


def encode_json(data: Any) -> str:
    """Serialize the way write_json_locked stores it."""
    return json.dumps(data, ensure_ascii=False, indent=2)


def write_json_locked(path: Path, data: Any) -> None:
    """Write JSON atomically under an exclusive lock.

    Writes to a temp file and replaces the target, so readers never see a
    half-written file. OSError (disk full, permissions) propagates.

    Args:
        path: File to write
        data: JSON-serializable data
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_suffix(".lock")
    payload = encode_json(data)

    with open(lock_path, "w") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            temp_path = path.with_suffix(".tmp")
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(payload)
                temp_path.replace(path)
            finally:
                if temp_path.exists():
                    temp_path.unlink()
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
