import re
from pathlib import Path

from nsm._src.constants import DescriptorFormat
from nsm._src.descriptor.section import Section, matching_bracket, split_comment


# `packages = with pkgs; [` or `buildInputs = [`
OPENING_MARKER = re.compile(r"\b(?:packages|buildInputs)\s*=\s*(?:with\s+[\w.]+\s*;\s*)?\[")


class ShellDescriptor:
    dialect = DescriptorFormat.SHELL

    @classmethod
    def detect(cls, directory):
        """Detect if the given directory holds a shell.nix.
        If it does, it will return an instance of ShellDescriptor
        """
        path = Path(directory) / cls.dialect.filename
        if path.is_file():
            return cls(path)
        return None

    def __init__(self, path):
        self.path = Path(path)

    @staticmethod
    def find_section(content: str) -> Section | None:
        """Locate the package list by walking the file line by line.

        The section opens on the first non-comment line carrying the
        opening marker and closes at the matching `]`, skipping nested
        lists and brackets inside comments.

        Returns
        -------
        section: Section | None
            The span between the brackets, or None if there is no marker
            or the list is never closed.
        """
        offset = 0
        for line in content.splitlines(keepends=True):
            code, _ = split_comment(line)
            match = OPENING_MARKER.search(code)
            if match is not None:
                start = offset + match.end()
                close = matching_bracket(content, start)
                if close == -1:
                    return None
                return Section(start, close)
            offset += len(line)
        return None
