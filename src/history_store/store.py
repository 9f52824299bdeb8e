"""Dialog store: the operations external callers use.

Mutating operations (save, set_summary, clear, restore_backup) hold the
dialog's lock and do their file work in a worker thread. Read-only
operations take no lock and rely on atomic renames to never see a
partially written file.
"""

import asyncio
import json
import math
import time
from pathlib import Path
from typing import Any

from history_store.backups import BackupManager
from history_store.comfort import ComfortZoneMonitor
from history_store.config import Config
from history_store.logging import get_logger
from history_store.models import DialogDetail, Message
from history_store.paths import (
    MESSAGES_FILE,
    SUMMARY_FILE,
    list_dialog_names,
    resolve_dialog_dir,
)
from history_store.storage.durable import DurableWriter, read_json
from history_store.storage.locks import DialogLocks
from history_store.summary import (
    MODE_MERGE,
    MODES,
    apply_summary,
    normalize_summary_text,
    read_summary_normalized,
)

logger = get_logger("store")

DEFAULT_RECENT_TURNS = 6
DEFAULT_SINCE_LIMIT = 50
MAX_SINCE_LIMIT = 200


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def _read_messages(dialog_dir: Path) -> list[dict[str, Any]]:
    messages = read_json(dialog_dir / MESSAGES_FILE, [])
    if not isinstance(messages, list):
        logger.warning("Ignoring non-list message log in %s", dialog_dir)
        return []
    kept = [m for m in messages if isinstance(m, dict)]
    if len(kept) != len(messages):
        logger.warning("Skipping %d malformed entries in %s", len(messages) - len(kept), dialog_dir)
    return kept


def _last_ts(messages: list[dict[str, Any]]) -> int | None:
    if not messages:
        return None
    last = messages[-1]
    ts = last.get("ts") if isinstance(last, dict) else None
    if isinstance(ts, float) and math.isfinite(ts):
        return int(ts)
    return ts if isinstance(ts, int) and not isinstance(ts, bool) else None


class DialogStore:
    """Per-project dialog histories backed by JSON files.

    Args:
        config: Store, comfort-zone and backup settings
        locks: Lock registry; each store gets its own unless one is shared
        writer: Atomic writer used for every persisted file
    """

    def __init__(
        self,
        config: Config | None = None,
        locks: DialogLocks | None = None,
        writer: DurableWriter | None = None,
    ) -> None:
        self.config = config or Config()
        self.locks = locks or DialogLocks()
        self.writer = writer or DurableWriter()
        self.backups = BackupManager(self.writer, keep=self.config.backups.keep)
        self.comfort = ComfortZoneMonitor(
            max_messages=self.config.comfort.max_messages,
            max_bytes=self.config.comfort.max_bytes,
        )

    def dialog_dir(self, project_root: str | Path, dialog: str | None) -> Path:
        return resolve_dialog_dir(project_root, dialog, self.config.store)

    @staticmethod
    def lock_key(dialog_dir: Path) -> str:
        # The resolved directory identifies (project, dialog) after sanitization.
        return str(dialog_dir)

    async def _load_summary(self, dialog_dir: Path) -> str | None:
        path = dialog_dir / SUMMARY_FILE
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable summary %s: %s", path, e)
            return None
        text, repaired = normalize_summary_text(raw)
        if not repaired:
            return text
        # Re-read under the lock so the repair cannot overwrite a newer summary.
        async with self.locks.hold(self.lock_key(dialog_dir)):
            return await asyncio.to_thread(read_summary_normalized, path, self.writer)

    async def fetch(
        self,
        project_root: str | Path,
        dialog: str | None,
        recent_turns: int = DEFAULT_RECENT_TURNS,
        include_summary: bool = True,
        include_messages: bool = True,
    ) -> DialogDetail:
        """Return the summary, the last `recent_turns` messages and maintenance advice."""
        dialog_dir = self.dialog_dir(project_root, dialog)
        summary = await self._load_summary(dialog_dir) if include_summary else None
        messages: list[dict[str, Any]] = []
        if include_messages and recent_turns > 0:
            messages = _read_messages(dialog_dir)[-recent_turns:]

        maintenance = self.comfort.check_store(dialog_dir)
        if not maintenance.needs_compaction:
            maintenance = self.comfort.check_response(messages, summary)

        return DialogDetail(
            summary=summary,
            messages=messages,
            maintenance=maintenance if maintenance.needs_compaction else None,
            include_summary=include_summary,
            include_messages=include_messages,
        )

    async def get_summary(self, project_root: str | Path, dialog: str | None) -> dict[str, Any]:
        dialog_dir = self.dialog_dir(project_root, dialog)
        return {"summary": await self._load_summary(dialog_dir)}

    def _append(self, dialog_dir: Path, entries: list[Any]) -> int:
        messages = _read_messages(dialog_dir)
        previous = _last_ts(messages)
        new_messages = []
        for entry in entries:
            assigned = now_ms()
            if previous is not None and assigned <= previous:
                assigned = previous + 1
            msg = Message.from_entry(entry, ts=assigned)
            previous = msg.ts
            new_messages.append(msg.to_dict())

        messages.extend(new_messages)
        cap = self.config.store.max_log_messages
        if len(messages) > cap:
            dropped = len(messages) - cap
            messages = messages[dropped:]
            logger.debug("Evicted %d oldest messages from %s", dropped, dialog_dir.name)

        self.writer.write_json(dialog_dir / MESSAGES_FILE, messages)
        return len(new_messages)

    async def save(
        self,
        project_root: str | Path,
        dialog: str | None,
        entry: dict[str, Any] | None = None,
        entries: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Append `entry` and then `entries`, in order."""
        batch: list[Any] = []
        if entry is not None:
            batch.append(entry)
        if entries:
            batch.extend(entries)
        if not batch:
            return {"ok": False, "error": "Provide entry or entries"}

        dialog_dir = self.dialog_dir(project_root, dialog)
        async with self.locks.hold(self.lock_key(dialog_dir)):
            try:
                saved = await asyncio.to_thread(self._append, dialog_dir, batch)
            except ValueError as e:
                return {"ok": False, "error": "Invalid entry", "detail": str(e)}
            except OSError as e:
                logger.error("Failed to save messages for %s: %s", dialog_dir, e)
                return {"ok": False, "error": "Failed to write messages", "detail": str(e)}
        return {"ok": True, "saved": saved}

    def _write_summary(self, dialog_dir: Path, value: Any, mode: str) -> None:
        path = dialog_dir / SUMMARY_FILE
        current = None
        if path.exists():
            text = read_summary_normalized(path, self.writer)
            if text is not None:
                try:
                    current = json.loads(text)
                except json.JSONDecodeError:
                    current = None
        self.writer.write_json(path, apply_summary(current, value, mode))

    async def set_summary(
        self,
        project_root: str | Path,
        dialog: str | None,
        summary: str,
        mode: str = MODE_MERGE,
    ) -> dict[str, Any]:
        """Persist a summary given as JSON text, replacing or merging."""
        if mode not in MODES:
            return {"ok": False, "error": "Invalid mode", "detail": f"mode must be one of {', '.join(MODES)}"}
        try:
            value = json.loads(summary)
        except (TypeError, json.JSONDecodeError) as e:
            return {"ok": False, "error": "Invalid JSON for summary", "detail": str(e)}

        dialog_dir = self.dialog_dir(project_root, dialog)
        async with self.locks.hold(self.lock_key(dialog_dir)):
            try:
                await asyncio.to_thread(self._write_summary, dialog_dir, value, mode)
            except OSError as e:
                logger.error("Failed to write summary for %s: %s", dialog_dir, e)
                return {"ok": False, "error": "Failed to write summary", "detail": str(e)}
        return {"ok": True, "mode": mode}

    def _clear(self, dialog_dir: Path) -> dict[str, Any]:
        backup = self.backups.snapshot(dialog_dir)
        for name in (MESSAGES_FILE, SUMMARY_FILE):
            (dialog_dir / name).unlink(missing_ok=True)
        logger.info("Cleared dialog: dir=%s backup=%s", dialog_dir, backup.id or "-")
        return backup.to_dict()

    async def clear(self, project_root: str | Path, dialog: str | None) -> dict[str, Any]:
        """Back up the live files, then delete them."""
        dialog_dir = self.dialog_dir(project_root, dialog)
        async with self.locks.hold(self.lock_key(dialog_dir)):
            backup = await asyncio.to_thread(self._clear, dialog_dir)
        return {"ok": True, "backup": backup}

    async def list_dialogs(self, project_root: str | Path) -> dict[str, Any]:
        return {"dialogs": list_dialog_names(project_root, self.config.store)}

    async def get_messages_since(
        self,
        project_root: str | Path,
        dialog: str | None,
        since_ts: int | None = None,
        limit: int = DEFAULT_SINCE_LIMIT,
    ) -> dict[str, Any]:
        """Messages after `since_ts` (oldest first), or the most recent ones."""
        limit = max(1, min(int(limit), MAX_SINCE_LIMIT))
        messages = _read_messages(self.dialog_dir(project_root, dialog))
        if since_ts is None:
            return {"messages": messages[-limit:]}
        newer = [
            m for m in messages
            if isinstance(m, dict) and isinstance(m.get("ts"), (int, float)) and m["ts"] > since_ts
        ]
        return {"messages": newer[:limit]}

    async def stats(self, project_root: str | Path, dialog: str | None) -> dict[str, Any]:
        dialog_dir = self.dialog_dir(project_root, dialog)
        messages = _read_messages(dialog_dir)
        report = self.comfort.check_store(dialog_dir)
        return {
            "messages": len(messages),
            "approxBytes": report.bytes,
            "lastTs": _last_ts(messages),
            "backups": self.backups.count(dialog_dir),
            "thresholds": {**self.comfort.thresholds(), "backupKeep": self.backups.keep},
            "needsCompaction": report.needs_compaction,
            "reason": report.reason,
        }

    async def list_backups(self, project_root: str | Path, dialog: str | None) -> dict[str, Any]:
        dialog_dir = self.dialog_dir(project_root, dialog)
        return {"backups": [b.to_dict() for b in self.backups.list_backups(dialog_dir)]}

    async def restore_backup(
        self,
        project_root: str | Path,
        dialog: str | None,
        backup_id: str,
    ) -> dict[str, Any]:
        """Restore a backup after checkpointing the current state."""
        dialog_dir = self.dialog_dir(project_root, dialog)
        async with self.locks.hold(self.lock_key(dialog_dir)):
            try:
                restored = await asyncio.to_thread(self.backups.restore, dialog_dir, backup_id)
            except OSError as e:
                logger.error("Failed to restore %s for %s: %s", backup_id, dialog_dir, e)
                return {"ok": False, "error": "Failed to restore backup", "detail": str(e)}
        if not restored:
            return {"ok": False, "error": f"Backup not found: {backup_id}"}
        return {"ok": True, "restored": backup_id}
