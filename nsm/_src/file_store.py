"""Atomic, lock-guarded file persistence.

Every write goes to a temporary file in the target's directory, is synced,
and is then renamed over the target, so readers see either the old or the
new content and never a torn file. An existing target is backed up to
``<path>.<timestamp>.backup`` first. Mutations of one path are serialized
through a per-path lock owned by a `LockManager`.

Locking is in-process only; another process writing the same file is not
excluded.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from nsm._src.constants import DEFAULT_FILE_PERMISSIONS, TEMP_FILE_PREFIX
from nsm._src.exceptions import FileStoreError, NotFoundError
from nsm._src.utils import backup_path_for, ensure_dir, normalize_path


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockManager:
    """Registry of one re-entrant lock per normalized absolute path.

    Locks are created on first use and kept for the life of the manager.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def lock_for(self, path: str | Path) -> threading.RLock:
        key = normalize_path(path)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def locked(self, path: str | Path) -> Iterator[None]:
        lock = self.lock_for(path)
        lock.acquire()
        logger.debug("Acquired lock for: %s", path)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released lock for: %s", path)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)


_default_lock_manager = LockManager()


def default_lock_manager() -> LockManager:
    return _default_lock_manager


class FileStore:
    def __init__(self, lock_manager: LockManager | None = None):
        self.locks = lock_manager if lock_manager is not None else default_lock_manager()

    def with_lock(self, path: str | Path, fn: Callable[[], T]) -> T:
        """Run `fn` while holding the lock for `path` and return its result."""
        with self.locks.locked(path):
            return fn()

    def safe_write(
        self,
        path: str | Path,
        data: bytes | str,
        permissions: int = DEFAULT_FILE_PERMISSIONS,
    ) -> None:
        """Atomically replace the contents of `path` with `data`.

        Parameters
        ----------
        path: str | Path
            The file to write. Its parent directory is created if needed.
        data: bytes | str
            The new contents, strings are encoded as utf-8.
        permissions: int
            Permission bits applied to the file before it becomes visible.
        """
        path = Path(path)
        if isinstance(data, str):
            data = data.encode("utf-8")

        with self.locks.locked(path):
            try:
                ensure_dir(path.parent)
            except OSError as err:
                raise FileStoreError("create directory", path.parent, err) from err

            tmp_path = self._write_temp(path.parent, data)
            try:
                os.chmod(tmp_path, permissions)
            except OSError as err:
                _discard(tmp_path)
                raise FileStoreError("chmod temp file for", path, err) from err

            if path.is_file():
                try:
                    self.backup(path)
                except Exception as err:
                    logger.warning("Failed to backup %s before overwriting: %s", path, err)

            try:
                os.replace(tmp_path, path)
            except OSError as err:
                _discard(tmp_path)
                raise FileStoreError("move temp file onto", path, err) from err

        logger.debug("Successfully wrote file: %s (%d bytes)", path, len(data))

    def safe_read(self, path: str | Path) -> bytes:
        path = Path(path)
        with self.locks.locked(path):
            if not path.is_file():
                raise NotFoundError(path)
            try:
                return path.read_bytes()
            except FileNotFoundError as err:
                raise NotFoundError(path) from err
            except OSError as err:
                raise FileStoreError("read", path, err) from err

    def read_text(self, path: str | Path) -> str:
        return self.safe_read(path).decode("utf-8")

    def write_text(
        self, path: str | Path, text: str, permissions: int = DEFAULT_FILE_PERMISSIONS
    ) -> None:
        self.safe_write(path, text.encode("utf-8"), permissions)

    def backup(self, path: str | Path) -> Path:
        """Copy `path` to a timestamped sibling, keeping its permission bits."""
        path = Path(path)
        backup = backup_path_for(path)
        with self.locks.locked(path), self.locks.locked(backup):
            if not path.is_file():
                raise NotFoundError(path)
            logger.debug("Creating backup of %s to %s", path, backup)
            try:
                data = path.read_bytes()
                mode = stat.S_IMODE(path.stat().st_mode)
            except OSError as err:
                raise FileStoreError("read", path, err) from err
            tmp_path = self._write_temp(backup.parent, data)
            try:
                os.chmod(tmp_path, mode)
                os.replace(tmp_path, backup)
            except OSError as err:
                _discard(tmp_path)
                raise FileStoreError("create backup", backup, err) from err
        return backup

    @staticmethod
    def _write_temp(directory: Path, data: bytes) -> Path:
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_FILE_PREFIX, dir=str(directory))
        except OSError as err:
            raise FileStoreError("create temp file in", directory, err) from err
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as err:
            _discard(tmp_path)
            raise FileStoreError("write temp file in", directory, err) from err
        return tmp_path


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as err:
        logger.warning("Failed to remove temp file %s: %s", tmp_path, err)
