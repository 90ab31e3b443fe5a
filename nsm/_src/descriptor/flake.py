import re
from pathlib import Path

from nsm._src.constants import DescriptorFormat
from nsm._src.descriptor.section import Section, matching_bracket


# opening of both `buildInputs = with pkgs; [ ... ]` and a bare `buildInputs = [ ... ]`
PACKAGE_SECTION = re.compile(
    r"\b(?:buildInputs|packages)\s*=\s*(?:with\s+[\w.]+\s*;\s*)?\["
)


class FlakeDescriptor:
    dialect = DescriptorFormat.FLAKE

    @classmethod
    def detect(cls, directory):
        """Detect if the given directory holds a flake.nix.
        If it does, it will return an instance of FlakeDescriptor
        """
        path = Path(directory) / cls.dialect.filename
        if path.is_file():
            return cls(path)
        return None

    def __init__(self, path):
        self.path = Path(path)

    @staticmethod
    def find_section(content: str) -> Section | None:
        match = PACKAGE_SECTION.search(content)
        if match is None:
            return None
        close = matching_bracket(content, match.end())
        if close == -1:
            return None
        return Section(match.end(), close)
