"""Tests for the backup manager."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from history_store.backups import (
    PRE_RESTORE_TAG,
    BackupManager,
    is_safe_backup_id,
    new_backup_id,
)
from history_store.storage.durable import DurableWriter


@pytest.fixture
def dialog_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".chat-history" / "dlg"
    d.mkdir(parents=True)
    return d


@pytest.fixture
def manager() -> BackupManager:
    return BackupManager(DurableWriter(), keep=5)


def write_state(dialog_dir: Path, messages: str, summary: str | None = None) -> None:
    (dialog_dir / "messages.json").write_text(messages)
    if summary is not None:
        (dialog_dir / "summary.json").write_text(summary)


class TestBackupIds:
    """Tests for backup id helpers."""

    def test_id_contains_tag(self) -> None:
        assert f"_{PRE_RESTORE_TAG}_" in new_backup_id(PRE_RESTORE_TAG)

    def test_ids_are_unique(self) -> None:
        assert len({new_backup_id() for _ in range(50)}) == 50

    def test_rejects_unsafe_ids(self) -> None:
        assert not is_safe_backup_id("")
        assert not is_safe_backup_id("..")
        assert not is_safe_backup_id("../x")
        assert not is_safe_backup_id("a\\b")
        assert is_safe_backup_id(new_backup_id())


class TestSnapshot:
    """Tests for BackupManager.snapshot."""

    def test_copies_existing_files(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[1]", '{"s": 1}')

        result = manager.snapshot(dialog_dir)

        assert result.dir is not None
        assert result.dir.parent == dialog_dir / "backups"
        assert sorted(result.files) == ["messages.json", "summary.json"]
        assert (result.dir / "messages.json").read_text() == "[1]"
        assert (result.dir / "summary.json").read_text() == '{"s": 1}'

    def test_partial_state(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[]")

        result = manager.snapshot(dialog_dir)

        assert result.files == ["messages.json"]

    def test_nothing_to_back_up(self, dialog_dir: Path, manager: BackupManager) -> None:
        result = manager.snapshot(dialog_dir)

        assert result.dir is None
        assert result.files == []
        assert not (dialog_dir / "backups").exists()

    def test_falls_back_to_read_write(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[1]")

        with patch("history_store.backups.shutil.copy2", side_effect=OSError("no copy")):
            result = manager.snapshot(dialog_dir)

        assert result.files == ["messages.json"]
        assert (result.dir / "messages.json").read_text() == "[1]"

    def test_failed_copy_is_omitted(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[1]", "{}")

        with (
            patch("history_store.backups.shutil.copy2", side_effect=OSError("no copy")),
            patch.object(Path, "write_bytes", side_effect=OSError("no write")),
        ):
            result = manager.snapshot(dialog_dir)

        assert result.dir is not None
        assert result.files == []

    def test_tagged_snapshot(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[]")

        result = manager.snapshot(dialog_dir, tag=PRE_RESTORE_TAG)

        assert PRE_RESTORE_TAG in result.id


class TestRetention:
    """Tests for pruning and listing."""

    def test_keeps_five_most_recent(self, dialog_dir: Path, manager: BackupManager) -> None:
        created = []
        for i in range(6):
            write_state(dialog_dir, f"[{i}]")
            created.append(manager.snapshot(dialog_dir).id)

        listed = [b.id for b in manager.list_backups(dialog_dir)]

        assert len(listed) == 5
        assert listed == list(reversed(created[1:]))
        assert not (dialog_dir / "backups" / created[0]).exists()

    def test_minimum_retention_is_one(self, dialog_dir: Path) -> None:
        manager = BackupManager(DurableWriter(), keep=0)
        write_state(dialog_dir, "[]")
        manager.snapshot(dialog_dir)
        last = manager.snapshot(dialog_dir)

        assert manager.keep == 1
        assert [b.id for b in manager.list_backups(dialog_dir)] == [last.id]

    def test_list_reports_files_and_mtime(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[]", "{}")
        result = manager.snapshot(dialog_dir)

        [info] = manager.list_backups(dialog_dir)

        assert info.id == result.id
        assert info.files == ["messages.json", "summary.json"]
        assert info.mtime == os.stat(result.dir).st_mtime_ns // 1_000_000

    def test_list_without_backups(self, dialog_dir: Path, manager: BackupManager) -> None:
        assert manager.list_backups(dialog_dir) == []
        assert manager.count(dialog_dir) == 0


class TestRestore:
    """Tests for BackupManager.restore."""

    def test_restores_and_checkpoints_current(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, '["B"]', '{"v": "B"}')
        backup = manager.snapshot(dialog_dir)
        write_state(dialog_dir, '["S"]', '{"v": "S"}')

        assert manager.restore(dialog_dir, backup.id) is True

        assert (dialog_dir / "messages.json").read_text() == '["B"]'
        assert (dialog_dir / "summary.json").read_text() == '{"v": "B"}'
        newest = manager.list_backups(dialog_dir)[0]
        assert PRE_RESTORE_TAG in newest.id
        checkpoint = dialog_dir / "backups" / newest.id
        assert (checkpoint / "messages.json").read_text() == '["S"]'
        assert (checkpoint / "summary.json").read_text() == '{"v": "S"}'

    def test_missing_file_in_backup_leaves_live_file(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, '["B"]')
        backup = manager.snapshot(dialog_dir)
        write_state(dialog_dir, '["S"]', '{"live": true}')

        manager.restore(dialog_dir, backup.id)

        assert (dialog_dir / "messages.json").read_text() == '["B"]'
        assert (dialog_dir / "summary.json").read_text() == '{"live": true}'

    def test_unknown_id(self, dialog_dir: Path, manager: BackupManager) -> None:
        write_state(dialog_dir, "[]")

        assert manager.restore(dialog_dir, "20990101T000000000Z_ffffff") is False
        assert manager.count(dialog_dir) == 0

    def test_path_traversal_id(self, dialog_dir: Path, manager: BackupManager) -> None:
        assert manager.restore(dialog_dir, "../dlg") is False

    def test_restore_survives_pruning_of_source(self, dialog_dir: Path) -> None:
        """With keep=1 the pre-restore checkpoint prunes the source backup."""
        manager = BackupManager(DurableWriter(), keep=1)
        write_state(dialog_dir, '["B"]')
        backup = manager.snapshot(dialog_dir)
        write_state(dialog_dir, '["S"]')

        assert manager.restore(dialog_dir, backup.id) is True

        assert (dialog_dir / "messages.json").read_text() == '["B"]'
        assert manager.count(dialog_dir) == 1
