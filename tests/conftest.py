from __future__ import annotations

import pytest

from nsm._src.exceptions import ToolchainError
from nsm._src.file_store import FileStore, LockManager
from nsm._src.models.toolchain import ExecResult
from nsm._src.settings import SettingsStore


class FakeToolchain:
    """Stands in for `Toolchain`, answers probes from its attributes."""

    def __init__(
        self,
        installed: bool = True,
        channels: tuple[str, ...] = ("nixos https://nixos.org/channels/nixos-unstable",),
        flakes: bool = True,
    ) -> None:
        self.installed = installed
        self._channels = list(channels)
        self.flakes = flakes
        self.calls: list[str] = []

    def is_installed(self) -> bool:
        return self.installed

    def check_installation(self) -> None:
        if not self.installed:
            raise ToolchainError(["nix"], "nix not found in PATH")

    def version(self) -> str:
        return "nix (Nix) 2.18.1"

    def channels(self) -> list[str]:
        if not self._channels:
            raise ToolchainError(["nix-channel", "--list"], "no channels configured")
        return list(self._channels)

    def flake_support(self) -> bool:
        return self.flakes

    def system_info(self) -> dict[str, str]:
        return {"platform": "linux", "nix_version": self.version(), "system": "x86_64-linux"}

    def run(self, cmd, args=(), timeout=None, cwd=None) -> ExecResult:
        self.calls.append(" ".join([cmd, *args]))
        return ExecResult(command=[cmd, *args])

    def current_system(self) -> str:
        return "x86_64-linux"

    def installed_packages(self) -> dict[str, str]:
        return {"ripgrep": "14.1.0", "jq": "1.7.1"}

    def package_version(self, name: str) -> str:
        self.calls.append(f"nix-env -qa --json {name}")
        return "1.7.1"

    def interactive(self, cmd, args=(), cwd=None) -> int:
        self.calls.append(" ".join([cmd, *args]))
        return 0

    def collect_garbage(self) -> ExecResult:
        self.calls.append("nix-collect-garbage -d")
        return ExecResult(command=["nix-collect-garbage", "-d"], stdout="0 store paths deleted\n")

    def update_channel(self) -> ExecResult:
        self.calls.append("nix-channel --update")
        return ExecResult(command=["nix-channel", "--update"])


@pytest.fixture
def file_store() -> FileStore:
    return FileStore(LockManager())


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "config" / "config.yaml"


@pytest.fixture
def settings(settings_file, file_store) -> SettingsStore:
    return SettingsStore(settings_file, file_store=file_store)


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def project_dir(tmp_path):
    directory = tmp_path / "project"
    directory.mkdir()
    return directory


@pytest.fixture
def toolchain_factory():
    return FakeToolchain
