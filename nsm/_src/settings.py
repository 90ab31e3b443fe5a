import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from nsm._src.constants import DEFAULT_FILE_PERMISSIONS, DescriptorFormat
from nsm._src.exceptions import NotFoundError, SettingsValidationError
from nsm._src.file_store import FileStore
from nsm._src.migrations import CURRENT_VERSION, migrate_raw, raw_version, version_state
from nsm._src.models.settings import SettingsDocument, SettingsViolation, shape_violations
from nsm._src.utils import (
    is_valid_package_name,
    is_valid_schema_version,
    is_valid_version,
    settings_path,
)


logger = logging.getLogger(__name__)

# user facing key -> SettingsDocument field
SETTINGS_KEYS = {
    "channel.url": "channel_ref",
    "shell.format": "descriptor_format",
    "default.packages": "default_packages",
    "config_version": "schema_version",
}


def validate_settings(document: SettingsDocument) -> List[SettingsViolation]:
    """Check every settings rule and return all violations, [] when valid."""
    violations = []

    channel = document.channel_ref
    if not channel:
        violations.append(SettingsViolation(
            key="channel.url", message="channel URL is required",
        ))
    elif not channel.startswith(("nixos-", "nixpkgs-")):
        violations.append(SettingsViolation(
            key="channel.url", message="channel URL must start with 'nixos-' or 'nixpkgs-'",
        ))

    formats = [fmt.value for fmt in DescriptorFormat]
    if document.descriptor_format not in formats:
        violations.append(SettingsViolation(
            key="shell.format",
            message=f"shell format must be one of {formats}, got {document.descriptor_format!r}",
        ))

    if document.default_packages is None:
        violations.append(SettingsViolation(
            key="default.packages",
            message="default.packages setting is required (can be empty list)",
        ))
    else:
        for pkg in document.default_packages:
            if not is_valid_package_name(pkg):
                violations.append(SettingsViolation(
                    key="default.packages", message=f"invalid package name: {pkg!r}",
                ))

    if not document.schema_version:
        violations.append(SettingsViolation(
            key="config_version", message="config version is required",
        ))
    elif not is_valid_schema_version(document.schema_version):
        violations.append(SettingsViolation(
            key="config_version",
            message=f"invalid config version: {document.schema_version} (must be MAJOR.MINOR.PATCH)",
        ))

    for pkg, version in document.pins.items():
        if not is_valid_package_name(pkg):
            violations.append(SettingsViolation(
                key="pins", message=f"invalid package name in pins: {pkg!r}",
            ))
        if not is_valid_version(version):
            violations.append(SettingsViolation(
                key="pins", message=f"invalid version for package {pkg}: {version!r}",
            ))

    return violations


class SettingsStore():
    def __init__(self, path: str | Path | None = None, file_store: FileStore | None = None):
        """SettingsStore owns the nsm settings file.

        Parameters
        ----------
        path: str | Path | None
            Location of the settings file, see `settings_path` for the
            default.
        file_store: FileStore | None
            Store used for locked, atomic persistence.
        """
        self.path = settings_path(path)
        self.file_store = file_store if file_store is not None else FileStore()

    def exists(self) -> bool:
        return self.path.is_file()

    def read_raw(self) -> Optional[Dict[str, Any]]:
        """Return the parsed settings mapping, or None if there is no file.

        A file that is not valid YAML, is not a mapping, or has a known key
        of the wrong type is never replaced silently: it raises
        SettingsValidationError and `reset` is the way out.
        """
        try:
            text = self.file_store.read_text(self.path)
        except NotFoundError:
            return None
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as err:
            raise SettingsValidationError(
                [SettingsViolation(key="<file>", message=f"unparseable YAML: {err}")],
                path=self.path,
            ) from err
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise SettingsValidationError(
                [SettingsViolation(key="<file>", message="expected a mapping at the top level")],
                path=self.path,
            )
        violations = shape_violations(raw)
        if violations:
            raise SettingsValidationError(violations, path=self.path)
        return raw

    def load(self) -> SettingsDocument:
        def _load():
            raw = self.read_raw()
            if raw is None:
                document = SettingsDocument(schema_version=CURRENT_VERSION)
                self._write(document.to_yaml_dict())
                logger.debug("Created default settings file: %s", self.path)
                return document
            return SettingsDocument.from_yaml_dict(raw)

        return self.file_store.with_lock(self.path, _load)

    def validate(self, document: SettingsDocument) -> List[SettingsViolation]:
        return validate_settings(document)

    def save(self, document: SettingsDocument) -> None:
        violations = self.validate(document)
        if violations:
            raise SettingsValidationError(violations, path=self.path)

        def _save():
            # keep keys nsm does not know about, an unreadable file is left for `reset`
            raw = self.read_raw() or {}
            raw.update(document.to_yaml_dict())
            self._write(raw)

        self.file_store.with_lock(self.path, _save)
        logger.debug("Saved settings to %s", self.path)

    def migrate(self) -> bool:
        """Bring the settings file up to the current schema version.

        Returns
        -------
        written: bool
            True if the file was rewritten. Current, unknown and future
            versions, as well as a missing file, leave the disk untouched.
        """
        def _migrate():
            raw = self.read_raw()
            if raw is None:
                return False
            migrated, applied = migrate_raw(raw)
            if not applied:
                return False
            self._write(migrated)
            logger.info("Migrated settings %s: %s", self.path, ", ".join(applied))
            return True

        return self.file_store.with_lock(self.path, _migrate)

    def reset(self) -> SettingsDocument:
        document = SettingsDocument(schema_version=CURRENT_VERSION)
        self.file_store.with_lock(self.path, lambda: self._write(document.to_yaml_dict()))
        logger.info("Reset settings %s to defaults", self.path)
        return document

    def update(self, fn: Callable[[SettingsDocument], Optional[SettingsDocument]]) -> SettingsDocument:
        """Load, apply `fn` and save, all under the settings lock.

        `fn` may mutate the document in place or return a new one.
        """
        def _update():
            document = self.load()
            updated = fn(document)
            if updated is None:
                updated = document
            self.save(updated)
            return updated

        return self.file_store.with_lock(self.path, _update)

    def get_value(self, key: str) -> Any:
        document = self.load()
        if key.startswith("pins."):
            return document.pins.get(key[len("pins."):])
        if key == "pins":
            return dict(document.pins)
        if key not in SETTINGS_KEYS:
            raise KeyError(key)
        return getattr(document, SETTINGS_KEYS[key])

    def set_value(self, key: str, value: Any) -> SettingsDocument:
        if key.startswith("pins."):
            return self.pin(key[len("pins."):], value)
        if key not in SETTINGS_KEYS:
            raise KeyError(key)
        field = SETTINGS_KEYS[key]
        if field == "default_packages" and isinstance(value, str):
            value = [pkg.strip() for pkg in value.split(",") if pkg.strip()]

        def _set(document):
            setattr(document, field, value)

        return self.update(_set)

    def pin(self, package: str, version: str) -> SettingsDocument:
        def _pin(document):
            document.pins[package] = version

        return self.update(_pin)

    def unpin(self, package: str) -> bool:
        def _unpin():
            document = self.load()
            if package not in document.pins:
                return False
            del document.pins[package]
            self.save(document)
            return True

        return self.file_store.with_lock(self.path, _unpin)

    def schema_state(self) -> str:
        """One of current, outdated, unknown, or missing when there is no file."""
        raw = self.read_raw()
        if raw is None:
            return "missing"
        return version_state(raw_version(raw))

    def _write(self, raw: Dict[str, Any]) -> None:
        text = yaml.safe_dump(raw, sort_keys=False, default_flow_style=False)
        self.file_store.safe_write(self.path, text, DEFAULT_FILE_PERMISSIONS)
