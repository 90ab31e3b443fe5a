import datetime
import os
import re
from pathlib import Path

from platformdirs import user_config_dir

from nsm._src.constants import (
    APP_NAME,
    BACKUP_SUFFIX,
    BACKUP_TIMESTAMP_FORMAT,
    CONFIG_ENV_VAR,
    CONFIG_FILE_NAME,
    MAX_PACKAGE_NAME_LENGTH,
)


_PACKAGE_NAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
_SCHEMA_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


def ensure_dir(s: str | Path) -> None:
    """Recursively create a directory if it does not exist"""
    path = Path(s)
    path.mkdir(parents=True, exist_ok=True)


def normalize_path(path: str | Path) -> str:
    """Absolute, normalized form of `path` used to key per-path locks."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def backup_path_for(path: str | Path, now: datetime.datetime | None = None) -> Path:
    """Return the sibling `<path>.<timestamp>.backup` name for `path`."""
    if now is None:
        now = datetime.datetime.now()
    return Path(f"{os.fspath(path)}.{now.strftime(BACKUP_TIMESTAMP_FORMAT)}{BACKUP_SUFFIX}")


def settings_path(path: str | Path | None = None) -> Path:
    """Locate the settings file.

    Parameters
    ----------
    path : str | Path | None
        An explicit location, used as is when given.

    Returns
    -------
    Path
        The explicit path, else the path in the ``NSM_CONFIG`` environment
        variable, else ``config.yaml`` in the platform's user config dir.
    """
    if path is not None:
        return Path(path).expanduser()
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path(user_config_dir(APP_NAME)) / CONFIG_FILE_NAME


def is_valid_package_name(name) -> bool:
    if not isinstance(name, str) or not name:
        return False
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        return False
    return _PACKAGE_NAME_RE.match(name) is not None


def is_valid_schema_version(version) -> bool:
    return isinstance(version, str) and _SCHEMA_VERSION_RE.match(version) is not None


def is_valid_version(version) -> bool:
    """Pinned versions are semver-like, an optional leading `v` is accepted."""
    if not isinstance(version, str):
        return False
    return is_valid_schema_version(version.removeprefix("v"))


def parse_version(version: str) -> tuple[int, int, int]:
    major, minor, patch = version.split(".")
    return int(major), int(minor), int(patch)
