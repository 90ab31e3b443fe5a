"""Tests for atomic writes, backups and per-path locking."""

from __future__ import annotations

import os
import stat
import threading

import pytest

from nsm._src import file_store as file_store_module
from nsm._src.exceptions import FileStoreError, NotFoundError
from nsm._src.file_store import FileStore, LockManager


def _backups(path):
    return sorted(path.parent.glob(f"{path.name}.*.backup"))


def _temp_files(directory):
    return sorted(directory.glob(".tmp-nsm-*"))


# ---------------------------------------------------------------------------
# safe_write / safe_read
# ---------------------------------------------------------------------------


class TestSafeWrite:
    def test_creates_parent_directories_and_file(self, tmp_path, file_store):
        target = tmp_path / "a" / "b" / "config.yaml"
        file_store.safe_write(target, "hello: world\n")

        assert target.read_text() == "hello: world\n"

    def test_applies_owner_only_permissions_by_default(self, tmp_path, file_store):
        target = tmp_path / "secret.yaml"
        file_store.safe_write(target, b"x")

        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_applies_requested_permissions(self, tmp_path, file_store):
        target = tmp_path / "shell.nix"
        file_store.safe_write(target, "{}", 0o644)

        assert stat.S_IMODE(target.stat().st_mode) == 0o644

    def test_overwrite_backs_up_previous_content(self, tmp_path, file_store):
        target = tmp_path / "config.yaml"
        file_store.safe_write(target, "old")
        file_store.safe_write(target, "new")

        assert target.read_text() == "new"
        backups = _backups(target)
        assert len(backups) == 1
        assert backups[0].read_text() == "old"

    def test_first_write_takes_no_backup(self, tmp_path, file_store):
        target = tmp_path / "config.yaml"
        file_store.safe_write(target, "data")

        assert _backups(target) == []

    def test_leaves_no_temp_files_behind(self, tmp_path, file_store):
        target = tmp_path / "config.yaml"
        file_store.safe_write(target, "one")
        file_store.safe_write(target, "two")

        assert _temp_files(tmp_path) == []

    def test_failed_rename_keeps_original_intact(self, tmp_path, file_store, monkeypatch):
        target = tmp_path / "config.yaml"
        file_store.safe_write(target, "original")

        def broken_replace(src, dst):
            raise OSError("simulated rename failure")

        monkeypatch.setattr(file_store_module.os, "replace", broken_replace)

        with pytest.raises(FileStoreError, match="simulated rename failure"):
            file_store.safe_write(target, "replacement")

        assert target.read_text() == "original"
        assert _temp_files(tmp_path) == []

    def test_failed_backup_does_not_block_write(self, tmp_path, file_store, monkeypatch, caplog):
        target = tmp_path / "config.yaml"
        file_store.safe_write(target, "old")

        def broken_backup(path):
            raise FileStoreError("create backup", path, "disk full")

        monkeypatch.setattr(file_store, "backup", broken_backup)
        with caplog.at_level("WARNING", logger="nsm._src.file_store"):
            file_store.safe_write(target, "new")

        assert target.read_text() == "new"
        assert "Failed to backup" in caplog.text


class TestSafeRead:
    def test_reads_bytes(self, tmp_path, file_store):
        target = tmp_path / "data"
        target.write_bytes(b"\x00\x01")

        assert file_store.safe_read(target) == b"\x00\x01"

    def test_missing_file_raises_not_found(self, tmp_path, file_store):
        with pytest.raises(NotFoundError) as excinfo:
            file_store.safe_read(tmp_path / "missing.yaml")

        assert excinfo.value.path.endswith("missing.yaml")

    def test_text_round_trip(self, tmp_path, file_store):
        target = tmp_path / "shell.nix"
        file_store.write_text(target, "packages = [ gcc ];\n")

        assert file_store.read_text(target) == "packages = [ gcc ];\n"


# ---------------------------------------------------------------------------
# backup
# ---------------------------------------------------------------------------


class TestBackup:
    def test_backup_preserves_mode_and_content(self, tmp_path, file_store):
        target = tmp_path / "shell.nix"
        target.write_text("content")
        os.chmod(target, 0o640)

        backup = file_store.backup(target)

        assert backup.name.startswith("shell.nix.")
        assert backup.name.endswith(".backup")
        assert backup.read_text() == "content"
        assert stat.S_IMODE(backup.stat().st_mode) == 0o640

    def test_backup_of_missing_file_raises(self, tmp_path, file_store):
        with pytest.raises(NotFoundError):
            file_store.backup(tmp_path / "nope")


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class TestLockManager:
    def test_same_lock_for_equivalent_paths(self, tmp_path):
        locks = LockManager()
        direct = tmp_path / "config.yaml"
        indirect = tmp_path / "sub" / ".." / "config.yaml"

        assert locks.lock_for(direct) is locks.lock_for(indirect)
        assert len(locks) == 1

    def test_distinct_locks_for_distinct_paths(self, tmp_path):
        locks = LockManager()

        assert locks.lock_for(tmp_path / "a") is not locks.lock_for(tmp_path / "b")
        assert len(locks) == 2

    def test_lock_is_reentrant(self, tmp_path, file_store):
        target = tmp_path / "config.yaml"

        def nested():
            file_store.safe_write(target, "inside")
            return file_store.read_text(target)

        assert file_store.with_lock(target, nested) == "inside"


class TestMutualExclusion:
    def _hold(self, file_store, path, entered, release):
        def fn():
            entered.set()
            release.wait(5)

        thread = threading.Thread(target=file_store.with_lock, args=(path, fn))
        thread.start()
        assert entered.wait(5)
        return thread

    def test_same_path_blocks_second_holder(self, tmp_path, file_store):
        path = tmp_path / "config.yaml"
        first_entered, release = threading.Event(), threading.Event()
        second_entered = threading.Event()

        holder = self._hold(file_store, path, first_entered, release)
        waiter = threading.Thread(
            target=file_store.with_lock, args=(path, second_entered.set)
        )
        waiter.start()

        assert not second_entered.wait(0.2)
        release.set()
        holder.join(5)
        waiter.join(5)
        assert second_entered.is_set()

    def test_distinct_paths_do_not_contend(self, tmp_path, file_store):
        first_entered, release = threading.Event(), threading.Event()
        second_entered = threading.Event()

        holder = self._hold(file_store, tmp_path / "a.yaml", first_entered, release)
        try:
            other = threading.Thread(
                target=file_store.with_lock, args=(tmp_path / "b.yaml", second_entered.set)
            )
            other.start()
            assert second_entered.wait(5)
            other.join(5)
        finally:
            release.set()
            holder.join(5)

    def test_concurrent_writers_never_tear_file(self, tmp_path, file_store):
        target = tmp_path / "config.yaml"
        payloads = [f"writer-{i}\n" * 200 for i in range(8)]

        threads = [
            threading.Thread(target=file_store.safe_write, args=(target, payload))
            for payload in payloads
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert target.read_text() in payloads
