import json
import logging
import stat
from pathlib import Path
from typing import Iterable, List, Tuple

from nsm._src.constants import DEFAULT_CHANNEL, FREEZE_FILE_NAME, DescriptorFormat
from nsm._src.descriptor.descriptor import (
    Descriptor,
    as_dialect,
    contains_package,
    extract_packages,
    inject_packages,
    remove_packages,
    render,
)
from nsm._src.exceptions import FileStoreError, FormatError, NotFoundError
from nsm._src.file_store import FileStore
from nsm._src.utils import is_valid_package_name


logger = logging.getLogger(__name__)

# descriptors are project files, usually committed, so world readable
DESCRIPTOR_PERMISSIONS = 0o644


def _check_names(packages: Iterable[str]) -> List[str]:
    packages = list(packages)
    invalid = [pkg for pkg in packages if not is_valid_package_name(pkg)]
    if invalid:
        raise FormatError(f"invalid package name(s): {', '.join(repr(pkg) for pkg in invalid)}")
    return packages


class Project():
    def __init__(self, directory: str | Path = ".", file_store: FileStore | None = None):
        self.directory = Path(directory)
        self.file_store = file_store if file_store is not None else FileStore()

    def descriptor(self) -> Descriptor:
        return Descriptor(self.directory)

    def path_for(self, dialect) -> Path:
        return self.directory / as_dialect(dialect).filename

    def init(
        self,
        dialect=DescriptorFormat.SHELL,
        packages: Iterable[str] = (),
        channel_ref: str = DEFAULT_CHANNEL,
    ) -> Path:
        """Write a fresh descriptor, refusing to overwrite an existing one."""
        packages = _check_names(packages)
        path = self.path_for(dialect)

        def _init():
            if path.exists():
                raise FileStoreError("create", path, "file already exists")
            self.file_store.safe_write(
                path, render(dialect, packages, channel_ref), DESCRIPTOR_PERMISSIONS
            )

        self.file_store.with_lock(path, _init)
        logger.debug("Initialized %s", path)
        return path

    def packages(self) -> List[str]:
        descriptor = self.descriptor()
        content = self.file_store.read_text(descriptor.path)
        return extract_packages(content, descriptor.dialect)

    def add(self, packages: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Add packages that are not listed yet.

        Returns
        -------
        added, skipped: tuple[list[str], list[str]]
            Packages written to the descriptor, and packages that were
            already present (exact name match) or repeated in the request.
        """
        packages = _check_names(packages)
        descriptor = self.descriptor()

        def _add():
            content = self.file_store.read_text(descriptor.path)
            added, skipped = [], []
            for pkg in packages:
                if pkg in added or contains_package(content, descriptor.dialect, pkg):
                    skipped.append(pkg)
                else:
                    added.append(pkg)
            if added:
                updated = inject_packages(content, descriptor.dialect, added)
                self._write(descriptor.path, updated)
            return added, skipped

        return self.file_store.with_lock(descriptor.path, _add)

    def remove(self, packages: Iterable[str]) -> int:
        descriptor = self.descriptor()
        to_remove = set(packages)

        def _remove():
            content = self.file_store.read_text(descriptor.path)
            updated, removed = remove_packages(content, descriptor.dialect, to_remove)
            if removed:
                self._write(descriptor.path, updated)
            return removed

        return self.file_store.with_lock(descriptor.path, _remove)

    def convert(self, channel_ref: str = DEFAULT_CHANNEL) -> Path:
        """Create a flake.nix carrying the packages of the shell.nix."""
        shell_path = self.path_for(DescriptorFormat.SHELL)
        flake_path = self.path_for(DescriptorFormat.FLAKE)
        if not shell_path.is_file():
            raise NotFoundError(shell_path)

        content = self.file_store.read_text(shell_path)
        packages = extract_packages(content, DescriptorFormat.SHELL)
        if not packages:
            raise FormatError(f"no packages found in {shell_path}, nothing to convert")

        def _convert():
            if flake_path.exists():
                raise FileStoreError("create", flake_path, "file already exists")
            self.file_store.safe_write(
                flake_path,
                render(DescriptorFormat.FLAKE, packages, channel_ref),
                DESCRIPTOR_PERMISSIONS,
            )

        self.file_store.with_lock(flake_path, _convert)
        return flake_path

    def shell_command(self) -> Tuple[str, List[str]]:
        """The command that enters this project's environment."""
        if self.descriptor().dialect is DescriptorFormat.FLAKE:
            return "nix", ["develop"]
        return "nix-shell", []

    def freeze(self, system: str, channel_ref: str = DEFAULT_CHANNEL) -> Path:
        """Record the channel and system the environment was built against."""
        path = self.directory / FREEZE_FILE_NAME
        data = {"channel": channel_ref, "system": system}
        self.file_store.safe_write(path, json.dumps(data, indent=2) + "\n", DESCRIPTOR_PERMISSIONS)
        logger.debug("Froze %s", path)
        return path

    def _write(self, path: Path, content: str) -> None:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except OSError:
            mode = DESCRIPTOR_PERMISSIONS
        self.file_store.safe_write(path, content, mode)
