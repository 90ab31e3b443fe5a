# Platform specific doctor checks. Which ones exist depends on the
# host: the permission and daemon checks only make sense where Nix
# installs into /nix on a POSIX system. Every check is a zero argument
# callable returning a DiagnosticResult and carries its name and
# description so a crash inside it can still be reported.

import os
import shutil
import sys
from pathlib import Path

from nsm._src.constants import MIN_FREE_DISK_SPACE, NIX_DAEMON_SOCKET, NIX_DIR, NIX_STORE_DIR
from nsm._src.exceptions import ToolchainError
from nsm._src.models.diagnostics import DiagnosticResult, Status


GIB = 1024 * 1024 * 1024


def diagnostic_check(name, description):
    """Attach a display name and description to a check function."""
    def decorate(fn):
        fn.check_name = name
        fn.check_description = description
        return fn
    return decorate


def check_info(check):
    name = getattr(check, "check_name", None) or getattr(check, "__name__", repr(check))
    description = getattr(check, "check_description", None) or ""
    return name, description


def new_result(check):
    name, description = check_info(check)
    return DiagnosticResult(name=name, description=description)


@diagnostic_check("Unix Permissions", "Checking permissions for Nix operations")
def check_unix_permissions() -> DiagnosticResult:
    result = new_result(check_unix_permissions)
    if not os.path.isdir(NIX_DIR):
        result.status = Status.ERROR
        result.message = f"The {NIX_DIR} directory does not exist"
        result.fix = "Install Nix using: sh <(curl -L https://nixos.org/nix/install)"
        return result

    if not os.access(NIX_DIR, os.R_OK):
        result.status = Status.ERROR
        result.message = f"Insufficient permissions to read {NIX_DIR}"
        result.fix = (
            f"Make sure your user (uid={os.getuid()}, gid={os.getgid()}) "
            f"has read access to {NIX_DIR}"
        )
        return result

    if not os.path.isdir(NIX_STORE_DIR):
        result.status = Status.ERROR
        result.message = f"The {NIX_STORE_DIR} directory does not exist"
        result.fix = "Reinstall Nix using: sh <(curl -L https://nixos.org/nix/install)"
        return result

    result.status = Status.OK
    result.message = f"Proper permissions for {NIX_DIR}"
    return result


@diagnostic_check("Disk Space", "Checking free disk space for the Nix store")
def check_disk_space(path: str | None = None) -> DiagnosticResult:
    result = new_result(check_disk_space)
    if path is None:
        path = NIX_STORE_DIR if os.path.isdir(NIX_STORE_DIR) else str(Path.home())

    try:
        free = shutil.disk_usage(path).free
    except OSError as err:
        result.status = Status.WARNING
        result.message = f"Could not check disk space for {path}: {err}"
        return result

    if free < MIN_FREE_DISK_SPACE:
        result.status = Status.WARNING
        result.message = (
            f"Low disk space on {path}: {free / GIB:.2f} GB available, "
            f"recommended at least {MIN_FREE_DISK_SPACE / GIB:.0f} GB"
        )
        result.fix = "Free up disk space or run 'nsm clean' to collect garbage"
        return result

    result.status = Status.OK
    result.message = f"{free / GIB:.2f} GB available on {path}"
    return result


def make_daemon_check(toolchain):
    @diagnostic_check("Nix Daemon", "Checking if the Nix daemon is running (multi-user installations)")
    def check_nix_daemon() -> DiagnosticResult:
        result = new_result(check_nix_daemon)
        if not os.path.exists(NIX_DAEMON_SOCKET):
            result.status = Status.OK
            result.message = "Single-user Nix installation detected (no daemon required)"
            return result

        try:
            toolchain.run("systemctl", ["is-active", "nix-daemon.service"], timeout=5)
        except ToolchainError:
            try:
                toolchain.run("pgrep", ["-f", "nix-daemon"], timeout=5)
            except ToolchainError:
                result.status = Status.ERROR
                result.message = "Nix daemon is not running"
                result.fix = "Start the Nix daemon with: sudo systemctl start nix-daemon.service"
                return result

        result.status = Status.OK
        result.message = "Nix daemon is running"
        return result

    return check_nix_daemon


def platform_checks(toolchain, platform: str | None = None) -> list:
    """Checks available on `platform` (defaults to the running one)."""
    if platform is None:
        platform = sys.platform
    if platform.startswith("win"):
        return [check_disk_space]
    return [check_unix_permissions, check_disk_space, make_daemon_check(toolchain)]
