# NOTE:
# Package lists are found with line scanning (shell) and a single bounded
# pattern (flake) rather than a real Nix parser. Callers only go through
# the functions below, so a parser can replace the scanning later.

import logging
from pathlib import Path
from typing import Iterable

from nsm._src.constants import DEFAULT_CHANNEL, FLAKE_TEMPLATE, SHELL_TEMPLATE, DescriptorFormat
from nsm._src.descriptor.flake import FlakeDescriptor
from nsm._src.descriptor.section import Section, drop_tokens, insert_tokens, section_tokens
from nsm._src.descriptor.shell import ShellDescriptor
from nsm._src.exceptions import FormatError, NotFoundError


logger = logging.getLogger(__name__)

IMPLEMENTATIONS = {
    DescriptorFormat.SHELL: ShellDescriptor,
    DescriptorFormat.FLAKE: FlakeDescriptor,
}


class Descriptor():
    def __init__(self, directory="."):
        """Descriptor finds the environment descriptor of a project
        directory. shell.nix takes precedence over flake.nix when both
        exist.

        Parameters
        ----------
        directory: str
            The path to the project
        """
        self.directory = Path(directory)

        if not self.directory.is_dir():
            raise NotFoundError(self.directory, what="project directory")

        # detect which dialect the project uses
        for impl in [ShellDescriptor, FlakeDescriptor]:
            self.descriptor = impl.detect(self.directory)
            if self.descriptor is not None:
                break

        if self.descriptor is None:
            raise NotFoundError(self.directory, what="shell.nix or flake.nix in")

    @property
    def path(self) -> Path:
        return self.descriptor.path

    @property
    def dialect(self) -> DescriptorFormat:
        return self.descriptor.dialect


def as_dialect(dialect) -> DescriptorFormat:
    try:
        return DescriptorFormat(dialect)
    except ValueError:
        raise FormatError(f"unsupported descriptor format: {dialect!r}") from None


def find_section(content: str, dialect) -> Section | None:
    return IMPLEMENTATIONS[as_dialect(dialect)].find_section(content)


def extract_packages(content: str, dialect) -> list[str]:
    """Return the package names of the descriptor in file order.

    A missing or unterminated package section yields an empty list, the
    file may simply predate package management.
    """
    section = find_section(content, dialect)
    if section is None:
        logger.debug("No package section found in %s descriptor", as_dialect(dialect).value)
        return []
    return section_tokens(content, section)


def inject_packages(content: str, dialect, new_packages: Iterable[str]) -> str:
    """Insert `new_packages` right before the closing bracket of the package
    section. Duplicates are not filtered, see `contains_package`.
    """
    section = find_section(content, dialect)
    if section is None:
        raise FormatError(
            f"could not find a package list in the {as_dialect(dialect).filename} content"
        )
    return insert_tokens(content, section, new_packages)


def remove_packages(content: str, dialect, to_remove: Iterable[str]) -> tuple[str, int]:
    """Return the content without `to_remove` and how many entries were dropped."""
    section = find_section(content, dialect)
    if section is None:
        return content, 0
    return drop_tokens(content, section, set(to_remove))


def contains_package(content: str, dialect, name: str) -> bool:
    return name in extract_packages(content, dialect)


def render(dialect, packages: Iterable[str] = (), channel_ref: str = DEFAULT_CHANNEL) -> str:
    """Default descriptor content for a new project."""
    dialect = as_dialect(dialect)
    packages = list(packages)
    if dialect is DescriptorFormat.SHELL:
        template, indent = SHELL_TEMPLATE, " " * 4
    else:
        template, indent = FLAKE_TEMPLATE, " " * 10
    if packages:
        lines = "".join(f"{indent}{pkg}\n" for pkg in packages)
    else:
        lines = f"{indent}# Add your packages here\n"
    return template.format(PACKAGES=lines, CHANNEL=channel_ref)
