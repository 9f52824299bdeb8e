"""Dialog backups: snapshot, retention and restore.

Layout: <dialog_dir>/backups/<id>/{messages.json, summary.json}
where <id> is a UTC timestamp, an optional tag and a short random suffix.
"""

import os
import secrets
import shutil
from datetime import datetime, timezone
from pathlib import Path

from history_store.logging import get_logger
from history_store.models import BackupInfo, BackupResult
from history_store.paths import BACKUPS_DIR, MESSAGES_FILE, SUMMARY_FILE
from history_store.storage.durable import DurableWriter

logger = get_logger("backups")

BACKED_UP_FILES = (MESSAGES_FILE, SUMMARY_FILE)
PRE_RESTORE_TAG = "pre-restore"


def new_backup_id(tag: str | None = None, now: datetime | None = None) -> str:
    """Generate a backup id such as 20250315T101500123Z_pre-restore_a1b2c3."""
    if now is None:
        now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%dT%H%M%S") + f"{now.microsecond // 1000:03d}Z"
    parts = [stamp]
    if tag:
        parts.append(tag)
    parts.append(secrets.token_hex(3))
    return "_".join(parts)


def is_safe_backup_id(backup_id: str) -> bool:
    """Reject ids that could point outside the backups directory."""
    if not backup_id or backup_id in (".", ".."):
        return False
    return "/" not in backup_id and "\\" not in backup_id and os.sep not in backup_id


def copy_into_backup(source: Path, dest: Path) -> bool:
    """Copy one live file into a backup directory.

    Falls back to read-then-write when shutil.copy2 fails.

    Returns:
        True if the file was copied
    """
    try:
        shutil.copy2(source, dest)
        return True
    except OSError as e:
        logger.debug("copy2 failed for %s, falling back to read/write: %s", source, e)
    try:
        dest.write_bytes(source.read_bytes())
        return True
    except OSError as e:
        logger.warning("Omitting %s from backup %s: %s", source.name, dest.parent.name, e)
        return False


class BackupManager:
    """Creates, prunes, lists and restores dialog backups."""

    def __init__(self, writer: DurableWriter, keep: int = 5) -> None:
        self._writer = writer
        self.keep = max(1, keep)

    @staticmethod
    def backups_dir(dialog_dir: Path) -> Path:
        return dialog_dir / BACKUPS_DIR

    def _entries(self, dialog_dir: Path) -> list[tuple[int, str, Path]]:
        """Backup directories as (mtime_ns, name, path), newest first."""
        container = self.backups_dir(dialog_dir)
        if not container.is_dir():
            return []
        entries = []
        for entry in container.iterdir():
            try:
                if entry.is_dir():
                    entries.append((entry.stat().st_mtime_ns, entry.name, entry))
            except OSError:
                continue
        entries.sort(reverse=True)
        return entries

    def snapshot(self, dialog_dir: Path, tag: str | None = None) -> BackupResult:
        """Copy the live dialog files into a new backup directory.

        Nothing is created when the dialog has no live files. Retention is
        applied after every created backup.

        Args:
            dialog_dir: Dialog directory
            tag: Optional label embedded in the backup id

        Returns:
            BackupResult with the new directory and the files actually copied
        """
        sources = [dialog_dir / name for name in BACKED_UP_FILES if (dialog_dir / name).is_file()]
        if not sources:
            return BackupResult(dir=None, files=[])

        existing = self._entries(dialog_dir)
        backup_dir = self.backups_dir(dialog_dir) / new_backup_id(tag)
        backup_dir.mkdir(parents=True, exist_ok=False)

        copied = [src.name for src in sources if copy_into_backup(src, backup_dir / src.name)]

        # Keep mtimes strictly increasing so newest-first ordering holds
        # even when the filesystem clock is coarse.
        mtime_ns = backup_dir.stat().st_mtime_ns
        if existing and mtime_ns <= existing[0][0]:
            mtime_ns = existing[0][0] + 1
            os.utime(backup_dir, ns=(mtime_ns, mtime_ns))

        logger.info(
            "Created backup: dialog=%s id=%s files=%s",
            dialog_dir.name,
            backup_dir.name,
            ",".join(copied) or "-",
        )

        self.prune(dialog_dir)
        return BackupResult(dir=backup_dir, files=copied)

    def prune(self, dialog_dir: Path) -> list[str]:
        """Delete backups beyond the retention count, oldest first.

        Returns:
            Ids of removed backups
        """
        removed = []
        for _, name, path in self._entries(dialog_dir)[self.keep:]:
            shutil.rmtree(path, ignore_errors=True)
            removed.append(name)
        if removed:
            logger.info("Pruned backups: dialog=%s removed=%s", dialog_dir.name, ",".join(removed))
        return removed

    def list_backups(self, dialog_dir: Path) -> list[BackupInfo]:
        """List backups newest first."""
        backups = []
        for mtime_ns, name, path in self._entries(dialog_dir):
            files = [f for f in BACKED_UP_FILES if (path / f).is_file()]
            backups.append(BackupInfo(id=name, mtime=mtime_ns // 1_000_000, files=files))
        return backups

    def count(self, dialog_dir: Path) -> int:
        return len(self._entries(dialog_dir))

    def restore(self, dialog_dir: Path, backup_id: str) -> bool:
        """Replace the live dialog files with those from a backup.

        The current state is snapshotted first (tagged pre-restore) so a
        restore can itself be undone. Files absent from the backup leave
        their live counterparts untouched. Callers must hold the dialog lock.

        Args:
            dialog_dir: Dialog directory
            backup_id: Id of the backup to restore

        Returns:
            False if the backup does not exist

        Raises:
            OSError: If writing a live file fails
        """
        if not is_safe_backup_id(backup_id):
            return False
        source_dir = self.backups_dir(dialog_dir) / backup_id
        if not source_dir.is_dir():
            return False

        # Read before snapshotting: retention may prune the source backup.
        payload = {}
        for name in BACKED_UP_FILES:
            path = source_dir / name
            if path.is_file():
                payload[name] = path.read_bytes()

        self.snapshot(dialog_dir, tag=PRE_RESTORE_TAG)

        for name, data in payload.items():
            self._writer.write_bytes(dialog_dir / name, data)

        logger.info(
            "Restored backup: dialog=%s id=%s files=%s",
            dialog_dir.name,
            backup_id,
            ",".join(payload) or "-",
        )
        return True
