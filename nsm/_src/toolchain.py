"""Thin wrapper around the external Nix command line programs.

Commands run as blocking subprocesses with a hard timeout. Failures that
look transient (timeouts, connection errors reported on stderr) are retried
with exponential backoff and jitter, anything else fails straight away
with a ToolchainError carrying the captured stderr.
"""

from __future__ import annotations

import json
import logging
import os
import random
import re
import shutil
import subprocess
import sys
import time
from typing import Any, Callable, Sequence

from nsm._src.constants import (
    DEFAULT_COMMAND_TIMEOUT,
    LONG_COMMAND_TIMEOUT,
    PROBE_COMMAND_TIMEOUT,
    QUERY_COMMAND_TIMEOUT,
)
from nsm._src.exceptions import FormatError, ToolchainError
from nsm._src.models.toolchain import ExecResult
from nsm._src.utils import is_valid_package_name


logger = logging.getLogger(__name__)

TRANSIENT_STDERR = re.compile(
    r"connection (refused|reset|timed out)|timed out|timeout|temporary failure"
    r"|could not resolve host|network is unreachable|unable to download"
    r"|HTTP error 5\d\d",
    re.IGNORECASE,
)


def _decode(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def is_transient(err: ToolchainError) -> bool:
    """Only timeouts and connection-shaped failures are worth another try."""
    if err.timed_out:
        return True
    if err.exit_code is None:
        return False
    return TRANSIENT_STDERR.search(err.stderr or "") is not None


class Toolchain():
    def __init__(
        self,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        retries: int = 2,
        backoff_base: float = 0.25,
        backoff_max: float = 4.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.retries = retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> ExecResult:
        command = [cmd, *args]
        if timeout is None:
            timeout = self.timeout

        attempt = 0
        while True:
            attempt += 1
            try:
                return self._run_once(command, timeout, cwd, attempt)
            except ToolchainError as err:
                if attempt > self.retries or not is_transient(err):
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Transient failure running `%s` (attempt %d of %d), retrying in %.2fs",
                    " ".join(command), attempt, self.retries + 1, delay,
                )
                self._sleep(delay)

    def run_json(
        self,
        cmd: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> Any:
        result = self.run(cmd, args, timeout=timeout, cwd=cwd)
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as err:
            raise ToolchainError(result.command, f"invalid JSON output: {err}") from err

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with +-25% jitter for the given attempt (1 based)."""
        base = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        jitter = base * 0.25
        return max(0.0, base + random.uniform(-jitter, jitter))

    def _run_once(self, command: list[str], timeout: float, cwd: str | None, attempt: int) -> ExecResult:
        logger.debug("Executing command: %s", " ".join(command))
        start = time.monotonic()
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
                check=False,
            )
        except FileNotFoundError as err:
            raise ToolchainError(command, f"{command[0]} not found in PATH") from err
        except subprocess.TimeoutExpired as err:
            raise ToolchainError(
                command,
                f"command timed out after {timeout}s",
                stderr=_decode(err.stderr),
                timed_out=True,
            ) from err
        except OSError as err:
            raise ToolchainError(command, err) from err

        duration_ms = int((time.monotonic() - start) * 1000)
        if proc.returncode != 0:
            raise ToolchainError(
                command,
                f"command exited with status {proc.returncode}",
                exit_code=proc.returncode,
                stderr=_decode(proc.stderr),
            )
        return ExecResult(
            command=command,
            stdout=_decode(proc.stdout),
            stderr=_decode(proc.stderr),
            exit_code=proc.returncode,
            duration_ms=duration_ms,
            attempts=attempt,
        )

    # ----- probes -----

    def is_installed(self) -> bool:
        if self.which("nix") is None:
            logger.debug("Nix binary not found in PATH")
            return False
        return True

    def in_nix_shell(self) -> bool:
        return bool(os.environ.get("IN_NIX_SHELL"))

    def check_installation(self) -> None:
        """Raise ToolchainError unless nix, nix-env and nix-store all work."""
        for binary in ("nix", "nix-env", "nix-store"):
            if self.which(binary) is None:
                raise ToolchainError([binary], f"{binary} not found in PATH")
        self.run("nix", ["--version"], timeout=PROBE_COMMAND_TIMEOUT)

    def version(self) -> str:
        return self.run("nix", ["--version"], timeout=PROBE_COMMAND_TIMEOUT).stdout.strip()

    def channels(self) -> list[str]:
        output = self.run("nix-channel", ["--list"], timeout=PROBE_COMMAND_TIMEOUT).stdout
        channels = [line.strip() for line in output.splitlines() if line.strip()]
        if not channels:
            raise ToolchainError(["nix-channel", "--list"], "no channels configured")
        return channels

    def flake_support(self) -> bool:
        try:
            self.run("nix", ["flake", "--version"], timeout=PROBE_COMMAND_TIMEOUT)
        except ToolchainError as err:
            logger.debug("Flakes not supported: %s", err)
            return False
        return True

    def current_system(self) -> str:
        output = self.run(
            "nix",
            ["eval", "--impure", "--expr", "builtins.currentSystem"],
            timeout=PROBE_COMMAND_TIMEOUT,
        ).stdout
        return output.strip().strip('"')

    def installed_packages(self) -> dict[str, str]:
        """Packages in the user profile, name -> version."""
        data = self.run_json(
            "nix-env", ["--query", "--installed", "--json"], timeout=QUERY_COMMAND_TIMEOUT
        )
        packages = {}
        for attr, info in data.items():
            if not isinstance(info, dict):
                continue
            packages[info.get("pname") or attr] = str(info.get("version", ""))
        return packages

    def package_version(self, name: str) -> str:
        if not is_valid_package_name(name):
            raise FormatError(f"invalid package name: {name!r}")
        data = self.run_json("nix-env", ["-qa", "--json", name], timeout=QUERY_COMMAND_TIMEOUT)
        for info in data.values():
            if isinstance(info, dict) and isinstance(info.get("version"), str):
                return info["version"]
        raise ToolchainError(["nix-env", "-qa", "--json", name], f"version not found for package {name}")

    def system_info(self) -> dict[str, str]:
        info = {"platform": sys.platform}
        try:
            info["nix_version"] = self.version()
        except ToolchainError as err:
            logger.debug("Failed to get Nix version: %s", err)
        try:
            info["system"] = self.current_system()
        except ToolchainError as err:
            logger.debug("Failed to get system architecture: %s", err)
        info["flakes_enabled"] = str(self.flake_support()).lower()
        info["in_nix_shell"] = str(self.in_nix_shell()).lower()
        return info

    def interactive(self, cmd: str, args: Sequence[str] = (), cwd: str | None = None) -> int:
        """Run a command attached to the terminal and return its exit status."""
        command = [cmd, *args]
        logger.debug("Executing interactive command: %s", " ".join(command))
        try:
            return subprocess.run(command, cwd=cwd, check=False).returncode
        except FileNotFoundError as err:
            raise ToolchainError(command, f"{command[0]} not found in PATH") from err

    # ----- long running -----

    def update_channel(self) -> ExecResult:
        return self.run("nix-channel", ["--update"], timeout=LONG_COMMAND_TIMEOUT)

    def collect_garbage(self) -> ExecResult:
        return self.run("nix-collect-garbage", ["-d"], timeout=LONG_COMMAND_TIMEOUT)
