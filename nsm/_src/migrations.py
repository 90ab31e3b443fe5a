"""Schema migrations for the settings file.

Each step is a pure function from the raw on-disk mapping at one
``config_version`` to the mapping at the next version. Steps are applied
one at a time until the document reaches `CURRENT_VERSION`. Documents at
a version this module does not know, including newer ones, are returned
unchanged.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from nsm._src.constants import DEFAULT_CHANNEL, DescriptorFormat


logger = logging.getLogger(__name__)

RawSettings = Dict[str, Any]

KNOWN_VERSIONS = ["1.0.0", "1.1.0"]
CURRENT_VERSION = KNOWN_VERSIONS[-1]

_LEGACY_FORMATS = {
    "shell.nix": DescriptorFormat.SHELL.value,
    "flake.nix": DescriptorFormat.FLAKE.value,
}


def _stamp_initial_version(raw: RawSettings) -> RawSettings:
    migrated = copy.deepcopy(raw)
    migrated["config_version"] = KNOWN_VERSIONS[0]
    return migrated


def _upgrade_1_0_0(raw: RawSettings) -> RawSettings:
    migrated = copy.deepcopy(raw)

    channel = migrated.get("channel")
    if isinstance(channel, dict):
        if not channel.get("url"):
            channel["url"] = DEFAULT_CHANNEL
    else:
        # flat `channel: nixos-23.11` from before channels were structured
        url = str(channel) if channel else DEFAULT_CHANNEL
        migrated["channel"] = {"url": url}
        if channel:
            logger.debug("Migrated channel format from %r to channel.url", channel)

    shell = migrated.get("shell")
    if not isinstance(shell, dict):
        shell = migrated["shell"] = {}
    shell_format = shell.get("format")
    if not shell_format:
        shell["format"] = DescriptorFormat.SHELL.value
    elif shell_format in _LEGACY_FORMATS:
        shell["format"] = _LEGACY_FORMATS[shell_format]

    default = migrated.get("default")
    if not isinstance(default, dict):
        default = migrated["default"] = {}
    if default.get("packages") is None:
        default["packages"] = []

    if not isinstance(migrated.get("pins"), dict):
        migrated["pins"] = {}

    migrated["config_version"] = "1.1.0"
    return migrated


# source version -> (target version, step)
STEPS: Dict[Optional[str], Tuple[str, Callable[[RawSettings], RawSettings]]] = {
    None: (KNOWN_VERSIONS[0], _stamp_initial_version),
    "1.0.0": ("1.1.0", _upgrade_1_0_0),
}


def raw_version(raw: RawSettings) -> Optional[str]:
    version = raw.get("config_version")
    if version is None or version == "":
        return None
    return str(version)


def version_state(version: Optional[str]) -> str:
    """Classify a schema version as "current", "outdated" or "unknown"."""
    if version == CURRENT_VERSION:
        return "current"
    if version in STEPS:
        return "outdated"
    return "unknown"


def migrate_raw(raw: RawSettings) -> Tuple[RawSettings, List[str]]:
    """Apply every pending step to `raw`.

    Returns
    -------
    migrated, applied: tuple[dict, list[str]]
        The migrated mapping (a copy when anything changed) and a
        "source -> target" label for each applied step.
    """
    applied: List[str] = []
    version = raw_version(raw)
    while version != CURRENT_VERSION:
        if version not in STEPS:
            logger.warning(
                "Leaving settings at unknown config_version %s untouched", version
            )
            break
        target, step = STEPS[version]
        raw = step(raw)
        applied.append(f"{version or 'unversioned'} -> {target}")
        version = target
    return raw, applied
