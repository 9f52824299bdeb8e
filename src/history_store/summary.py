"""Rolling-summary normalization and deep merge.

The merge is structural over plain JSON values (None, bool, int/float,
str, list, dict). Lists are unioned with "new first" ordering and
de-duplication; dicts are merged key by key; everything else is replaced
by the new value.
"""

import json
from pathlib import Path
from typing import Any

from history_store.logging import get_logger
from history_store.storage.durable import DurableWriter, dump_pretty

logger = get_logger("summary")

MODE_MERGE = "merge"
MODE_REPLACE = "replace"
MODES = (MODE_MERGE, MODE_REPLACE)


def canonical_json(value: Any) -> str:
    """Compact, key-sorted JSON used for structural equality."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def dedup_key(item: Any) -> tuple[str, str]:
    """Identity used to de-duplicate list elements during a merge.

    Objects are keyed by their `value` field, then by `id`; anything else
    falls back to its canonical JSON. The fallback treats equal-looking
    objects as the same entry even if they mean different things.
    """
    if isinstance(item, dict):
        if "value" in item:
            return ("value", canonical_json(item["value"]))
        if "id" in item:
            return ("id", canonical_json(item["id"]))
    return ("json", canonical_json(item))


def _merge_lists(old: list[Any], new: list[Any]) -> list[Any]:
    merged: list[Any] = []
    seen: set[tuple[str, str]] = set()
    for item in [*new, *old]:
        key = dedup_key(item)
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return merged


def merge_values(old: Any, new: Any) -> Any:
    """Deep-merge `new` into `old` without mutating either.

    Args:
        old: Currently stored value
        new: Incoming value; wins on every conflict

    Returns:
        Merged value
    """
    if isinstance(old, list) and isinstance(new, list):
        return _merge_lists(old, new)
    if isinstance(old, dict) and isinstance(new, dict):
        merged = dict(old)
        for key, value in new.items():
            merged[key] = merge_values(old[key], value) if key in old else value
        return merged
    return new


def apply_summary(current: Any, new: Any, mode: str) -> Any:
    """Compute the summary value to persist for a set-summary call.

    Raises:
        ValueError: If `mode` is not 'merge' or 'replace'
    """
    if mode not in MODES:
        raise ValueError(f"mode must be one of {', '.join(MODES)}")
    if mode == MODE_REPLACE:
        return new
    if isinstance(current, (dict, list)):
        return merge_values(current, new)
    return new


def normalize_summary_text(raw: str) -> tuple[str, bool]:
    """Undo double encoding of a stored summary.

    Returns:
        Tuple of (text, repaired). When the stored JSON is a string that
        itself holds JSON, text is the pretty inner value and repaired is
        True. Otherwise the raw text comes back unchanged.
    """
    try:
        outer = json.loads(raw)
    except json.JSONDecodeError:
        return raw, False
    if not isinstance(outer, str):
        return raw, False
    try:
        inner = json.loads(outer)
    except json.JSONDecodeError:
        return raw, False
    return dump_pretty(inner), True


def read_summary_normalized(path: Path, writer: DurableWriter) -> str | None:
    """Read a summary file, repairing double encoding on disk.

    Args:
        path: Summary file path
        writer: Writer used to persist a repair

    Returns:
        Summary text, or None if the file does not exist
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Unreadable summary %s: %s", path, e)
        return None

    text, repaired = normalize_summary_text(raw)
    if repaired:
        try:
            writer.write_text(path, text)
            logger.info("Repaired double-encoded summary: path=%s", path)
        except OSError as e:
            logger.warning("Could not persist summary repair for %s: %s", path, e)
    return text
