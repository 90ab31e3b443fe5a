from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from nsm._src.constants import DEFAULT_CHANNEL, DEFAULT_SCHEMA_VERSION, DescriptorFormat
from nsm._src.exceptions import SettingsValidationError


SCALARS = (str, int, float)


class SettingsViolation(BaseModel):
    """A single broken settings rule"""
    key: str
    message: str

    def __str__(self):
        return f"{self.key}: {self.message}"


def _wrong_type(key: str, expected: str, value: Any) -> SettingsViolation:
    return SettingsViolation(key=key, message=f"expected {expected}, got {type(value).__name__}")


def shape_violations(data: Dict[str, Any]) -> List[SettingsViolation]:
    """Report every known key whose value has the wrong YAML type.

    A null value counts as an absent key. The flat `channel: <name>` form
    from unversioned files is accepted.
    """
    violations = []

    channel = data.get("channel")
    if isinstance(channel, dict):
        url = channel.get("url")
        if url is not None and not isinstance(url, SCALARS):
            violations.append(_wrong_type("channel.url", "a channel name", url))
    elif channel is not None and not isinstance(channel, SCALARS):
        violations.append(_wrong_type("channel", "a mapping or a channel name", channel))

    shell = data.get("shell")
    if isinstance(shell, dict):
        shell_format = shell.get("format")
        if shell_format is not None and not isinstance(shell_format, str):
            violations.append(_wrong_type("shell.format", "a string", shell_format))
    elif shell is not None:
        violations.append(_wrong_type("shell", "a mapping", shell))

    default = data.get("default")
    if isinstance(default, dict):
        packages = default.get("packages")
        if isinstance(packages, list):
            for pkg in packages:
                if not isinstance(pkg, SCALARS):
                    violations.append(_wrong_type("default.packages", "package names", pkg))
        elif packages is not None and not isinstance(packages, str):
            violations.append(_wrong_type("default.packages", "a list of package names", packages))
    elif default is not None:
        violations.append(_wrong_type("default", "a mapping", default))

    pins = data.get("pins")
    if isinstance(pins, dict):
        for pkg, version in pins.items():
            if not isinstance(version, SCALARS):
                violations.append(_wrong_type(f"pins.{pkg}", "a version string", version))
    elif pins is not None:
        violations.append(_wrong_type("pins", "a mapping", pins))

    version = data.get("config_version")
    if version is not None and not isinstance(version, SCALARS):
        violations.append(_wrong_type("config_version", "a version string", version))

    return violations


class SettingsDocument(BaseModel):
    """The nsm settings file

    Fields are kept loosely typed so that a document read from disk can
    always be represented, `validate` reports everything that is wrong
    with it in one go.
    """
    channel_ref: str = DEFAULT_CHANNEL
    descriptor_format: str = DescriptorFormat.SHELL.value
    # None means the key is absent, which is a violation; [] is valid
    default_packages: Optional[List[str]] = Field(default_factory=list)
    pins: Dict[str, str] = Field(default_factory=dict)
    schema_version: str = DEFAULT_SCHEMA_VERSION

    @classmethod
    def from_yaml_dict(cls, data: Dict[str, Any]) -> "SettingsDocument":
        """Build a document from the nested on-disk layout, filling defaults.

        Raises SettingsValidationError when a known key has the wrong type.
        """
        violations = shape_violations(data)
        if violations:
            raise SettingsValidationError(violations)

        values: Dict[str, Any] = {}

        channel = data.get("channel")
        if isinstance(channel, dict):
            if channel.get("url") is not None:
                values["channel_ref"] = str(channel["url"])
        elif channel is not None:
            values["channel_ref"] = str(channel)

        shell = data.get("shell") or {}
        if shell.get("format") is not None:
            values["descriptor_format"] = shell["format"]

        default = data.get("default") or {}
        if "packages" in default:
            packages = default["packages"]
            if packages is None:
                values["default_packages"] = None
            elif isinstance(packages, str):
                values["default_packages"] = [packages]
            else:
                values["default_packages"] = [str(pkg) for pkg in packages]

        pins = data.get("pins") or {}
        values["pins"] = {str(k): str(v) for k, v in pins.items()}

        if data.get("config_version") is not None:
            values["schema_version"] = str(data["config_version"])

        return cls(**values)

    def to_yaml_dict(self) -> Dict[str, Any]:
        return {
            "channel": {"url": self.channel_ref},
            "shell": {"format": self.descriptor_format},
            "default": {"packages": None if self.default_packages is None else list(self.default_packages)},
            "pins": dict(self.pins),
            "config_version": self.schema_version,
        }

    @property
    def dialect(self) -> DescriptorFormat:
        return DescriptorFormat(self.descriptor_format)
