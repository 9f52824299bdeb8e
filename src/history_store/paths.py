"""Mapping of (project root, dialog name) to on-disk dialog directories."""

import re
from pathlib import Path

from history_store.config import StoreConfig

DEFAULT_DIALOG = "default"
MAX_NAME_LENGTH = 64

MESSAGES_FILE = "messages.json"
SUMMARY_FILE = "summary.json"
BACKUPS_DIR = "backups"

_ILLEGAL_CHARS = re.compile(r'[\\/:"*?<>|]+')
_WHITESPACE = re.compile(r"\s+")


def safe_name(raw: str | None) -> str:
    """Turn a raw dialog name into a filesystem-safe directory name.

    Illegal path characters collapse to '_', whitespace runs to '-', the
    result is truncated to 64 characters and lowercased. Empty names and
    names made only of dots map to 'default'.
    """
    name = raw or DEFAULT_DIALOG
    name = _ILLEGAL_CHARS.sub("_", name)
    name = _WHITESPACE.sub("-", name)
    name = name[:MAX_NAME_LENGTH].lower()
    if not name.strip("."):
        return DEFAULT_DIALOG
    return name


def history_root(project_root: str | Path, config: StoreConfig) -> Path:
    """Return the hidden history container for a project."""
    base = config.root if config.root is not None else Path(project_root)
    return base.expanduser().resolve() / config.subdir


def resolve_dialog_dir(project_root: str | Path, dialog: str | None, config: StoreConfig) -> Path:
    """Return the dialog's directory, creating it (and its parents) if needed."""
    dialog_dir = history_root(project_root, config) / safe_name(dialog)
    dialog_dir.mkdir(parents=True, exist_ok=True)
    return dialog_dir


def list_dialog_names(project_root: str | Path, config: StoreConfig) -> list[str]:
    """List dialog directory names under the history container, sorted.

    Does not create the container when it is missing.
    """
    container = history_root(project_root, config)
    if not container.is_dir():
        return []
    try:
        return sorted(entry.name for entry in container.iterdir() if entry.is_dir())
    except OSError:
        return []
