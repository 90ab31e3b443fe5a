"""Health checks for nsm, the Nix toolchain and the current project.

`Doctor.run` executes an ordered list of independent checks. A check that
raises is reported as an ``unknown`` result and the remaining checks still
run. `Doctor.fix` repairs the small set of problems nsm can fix without
elevated privileges and returns everything else as manual hints.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import Callable, List

from nsm._src.checks import check_info, diagnostic_check, new_result, platform_checks
from nsm._src.constants import DEFAULT_CHANNEL, DescriptorFormat
from nsm._src.descriptor.descriptor import Descriptor, extract_packages, find_section
from nsm._src.exceptions import NotFoundError, NsmError, SettingsValidationError, ToolchainError
from nsm._src.file_store import FileStore
from nsm._src.migrations import CURRENT_VERSION
from nsm._src.models.diagnostics import DiagnosticResult, FixReport, Status
from nsm._src.project import Project
from nsm._src.settings import SettingsStore
from nsm._src.toolchain import Toolchain


logger = logging.getLogger(__name__)

Check = Callable[[], DiagnosticResult]


def _install_hint() -> str:
    if sys.platform == "darwin":
        return "Install Nix using: sh <(curl -L https://nixos.org/nix/install)"
    if sys.platform.startswith("win"):
        return "Install Nix using WSL first, then run: sh <(curl -L https://nixos.org/nix/install)"
    return "Install Nix using: sh <(curl -L https://nixos.org/nix/install) --daemon"


class Doctor():
    def __init__(
        self,
        settings: SettingsStore,
        toolchain: Toolchain | None = None,
        project_dir: str | Path = ".",
        file_store: FileStore | None = None,
        checks: List[Check] | None = None,
    ):
        self.settings = settings
        self.toolchain = toolchain if toolchain is not None else Toolchain()
        self.file_store = file_store if file_store is not None else settings.file_store
        self.project = Project(project_dir, file_store=self.file_store)
        self.checks = checks if checks is not None else self.default_checks()

    def default_checks(self) -> List[Check]:
        return [
            *platform_checks(self.toolchain),
            self.check_nix_installed,
            self.check_channels,
            self.check_flakes,
            self.check_settings,
            self.check_project_files,
        ]

    def run(self) -> List[DiagnosticResult]:
        started = time.monotonic()
        logger.debug("Starting diagnostic checks")
        results = [self._run_check(check) for check in self.checks]
        logger.debug("Completed diagnostic checks in %.2fs", time.monotonic() - started)
        return results

    def _run_check(self, check: Check) -> DiagnosticResult:
        name, description = check_info(check)
        try:
            return check()
        except Exception as err:
            logger.debug("Check %s failed unexpectedly", name, exc_info=True)
            return DiagnosticResult(
                name=name,
                description=description,
                status=Status.UNKNOWN,
                message=f"Check could not complete: {err}",
            )

    # ----- checks -----

    @diagnostic_check("Nix Installation", "Checking if Nix is properly installed")
    def check_nix_installed(self) -> DiagnosticResult:
        result = new_result(self.check_nix_installed)
        if not self.toolchain.is_installed():
            result.status = Status.ERROR
            result.message = "Nix is not installed"
            result.fix = _install_hint()
            return result

        try:
            self.toolchain.check_installation()
        except ToolchainError as err:
            result.status = Status.ERROR
            result.message = f"Nix installation issue: {err.msg}"
            result.fix = "Reinstall Nix or check your PATH configuration"
            return result

        try:
            version = self.toolchain.version()
        except ToolchainError as err:
            result.status = Status.WARNING
            result.message = f"Could not determine Nix version: {err.msg}"
            return result

        result.status = Status.OK
        result.message = f"Nix is properly installed: {version}"
        return result

    @diagnostic_check("Nix Channels", "Checking Nix channel configuration")
    def check_channels(self) -> DiagnosticResult:
        result = new_result(self.check_channels)
        try:
            channels = self.toolchain.channels()
        except ToolchainError as err:
            result.status = Status.WARNING
            result.message = f"Channel issue: {err.msg}"
            result.fix = (
                f"Set up channels with: nix-channel --add "
                f"https://nixos.org/channels/{DEFAULT_CHANNEL} nixos"
            )
            return result

        result.status = Status.OK
        result.message = f"Channel configured: {', '.join(channels)}"
        return result

    @diagnostic_check("Flakes Support", "Checking if Nix flakes are enabled")
    def check_flakes(self) -> DiagnosticResult:
        result = new_result(self.check_flakes)
        if not self.toolchain.flake_support():
            result.status = Status.WARNING
            result.message = "Flakes are not enabled"
            result.fix = "Add 'experimental-features = nix-command flakes' to your Nix configuration"
            return result

        result.status = Status.OK
        result.message = "Flakes are supported"
        return result

    @diagnostic_check("NSM Configuration", "Checking the nsm settings file")
    def check_settings(self) -> DiagnosticResult:
        result = new_result(self.check_settings)
        if not self.settings.exists():
            result.status = Status.WARNING
            result.message = f"No settings file at {self.settings.path}, using defaults"
            result.fix = "Run 'nsm doctor --fix' to create it"
            return result

        try:
            state = self.settings.schema_state()
            document = self.settings.load()
        except SettingsValidationError as err:
            result.status = Status.ERROR
            result.message = err.msg
            result.fix = "Run 'nsm config reset' to reset to defaults (a backup is kept)"
            return result

        if state == "unknown":
            result.status = Status.UNKNOWN
            result.message = (
                f"Settings schema version {document.schema_version} is not known "
                f"to this nsm (current is {CURRENT_VERSION}), left untouched"
            )
            result.fix = "Upgrade nsm to a release that knows this settings version"
            return result

        violations = self.settings.validate(document)
        if violations:
            result.status = Status.ERROR
            lines = "\n".join(f"- {violation}" for violation in violations)
            result.message = f"Configuration errors:\n{lines}"
            result.fix = "Run 'nsm config reset' to reset to defaults (a backup is kept)"
            return result

        if state == "outdated":
            result.status = Status.WARNING
            result.message = (
                f"Settings use schema {document.schema_version}, current is {CURRENT_VERSION}"
            )
            result.fix = "Run 'nsm config migrate'"
            return result

        result.status = Status.OK
        result.message = f"Configuration is valid: {self.settings.path}"
        return result

    @diagnostic_check("Project Files", "Checking for Nix project files")
    def check_project_files(self) -> DiagnosticResult:
        result = new_result(self.check_project_files)
        try:
            descriptor = self.project.descriptor()
        except NotFoundError:
            result.status = Status.WARNING
            result.message = f"No Nix configuration found in {self.project.directory}"
            result.fix = "Run 'nsm init' to create a new Nix environment"
            return result

        filename = descriptor.path.name
        try:
            content = self.file_store.read_text(descriptor.path)
        except (NsmError, UnicodeDecodeError) as err:
            result.status = Status.ERROR
            result.message = f"{filename} was detected but cannot be read: {err}"
            return result

        if find_section(content, descriptor.dialect) is None:
            result.status = Status.WARNING
            result.message = f"Found {filename} but could not find a package list in it"
            result.fix = "Add a `packages = with pkgs; [ ];` list to manage packages with nsm"
            return result

        packages = extract_packages(content, descriptor.dialect)
        result.status = Status.OK
        if packages:
            result.message = f"Found valid {filename} with {len(packages)} packages"
        else:
            result.message = f"Found valid {filename} with no packages"
        return result

    # ----- auto fix -----

    def fix(self) -> FixReport:
        """Apply unprivileged fixes, then list what still needs a human."""
        report = FixReport()
        document = self._fix_settings(report)
        self._fix_descriptor(report, document)

        report.results = self.run()
        for result in report.results:
            if result.status is not Status.OK and result.fix:
                report.manual.append(f"{result.name}: {result.fix}")
        return report

    def _fix_settings(self, report: FixReport):
        try:
            if not self.settings.exists():
                document = self.settings.load()
                report.applied.append(f"Created default settings file {self.settings.path}")
                return document
            if self.settings.migrate():
                report.applied.append(f"Migrated settings to schema {CURRENT_VERSION}")
            document = self.settings.load()
        except SettingsValidationError:
            # unreadable settings are never replaced automatically
            return None
        except NsmError as err:
            logger.warning("Could not fix settings: %s", err)
            return None

        filled = []
        if not document.channel_ref:
            document.channel_ref = DEFAULT_CHANNEL
            filled.append("channel.url")
        if not document.descriptor_format:
            document.descriptor_format = DescriptorFormat.SHELL.value
            filled.append("shell.format")
        if document.default_packages is None:
            document.default_packages = []
            filled.append("default.packages")
        if filled and not self.settings.validate(document):
            self.settings.save(document)
            report.applied.append(f"Filled missing settings: {', '.join(filled)}")
        return document

    def _fix_descriptor(self, report: FixReport, document) -> None:
        try:
            Descriptor(self.project.directory)
            return
        except NotFoundError:
            pass
        if not self.project.directory.is_dir():
            return

        dialect = DescriptorFormat.SHELL
        packages = []
        channel = DEFAULT_CHANNEL
        if document is not None and not self.settings.validate(document):
            dialect = document.dialect
            packages = document.default_packages
            channel = document.channel_ref
        try:
            path = self.project.init(dialect, packages, channel)
        except NsmError as err:
            logger.warning("Could not create a default descriptor: %s", err)
            return
        report.applied.append(f"Created default {path.name}")
