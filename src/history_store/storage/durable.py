"""Crash-safe JSON persistence.

Readers degrade to a default on any failure; writers go through a
temporary file in the target's own directory followed by an atomic rename,
so a reader sees either the previous or the new complete file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from history_store.logging import get_logger

logger = get_logger("durable")


def read_json(path: Path, default: Any) -> Any:
    """Read a JSON file, returning `default` when it is absent, empty or corrupt.

    Args:
        path: File to read
        default: Value returned on every failure path (also for JSON null)

    Returns:
        Parsed value or `default`
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Unreadable JSON file %s: %s", path, e)
        return default

    if not raw.strip():
        return default

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        # Left on disk for inspection; new writes replace it.
        logger.warning("Corrupt JSON in %s: %s", path, e)
        return default

    return default if parsed is None else parsed


def dump_pretty(value: Any) -> str:
    """Serialize a value as 2-space indented JSON."""
    return json.dumps(value, indent=2, ensure_ascii=False)


class DurableWriter:
    """Atomic file writer (temp file + fsync + rename)."""

    def __init__(self, fsync: bool = True) -> None:
        self._fsync = fsync

    def write_bytes(self, path: Path, data: bytes) -> None:
        """Atomically replace `path` with `data`.

        The temp file lives in the same directory as `path` so that the
        final os.replace never crosses a filesystem boundary.

        Raises:
            OSError: If the temp file cannot be written or renamed. The
                previous content of `path` is left intact.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        logger.debug("Atomic write: path=%s bytes=%d", path, len(data))

    def write_text(self, path: Path, text: str) -> None:
        self.write_bytes(path, text.encode("utf-8"))

    def write_json(self, path: Path, value: Any) -> None:
        self.write_text(path, dump_pretty(value))
