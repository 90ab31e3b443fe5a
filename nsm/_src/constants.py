from enum import Enum


APP_NAME = "nsm"

CONFIG_FILE_NAME = "config.yaml"
CONFIG_ENV_VAR = "NSM_CONFIG"

DEFAULT_CHANNEL = "nixos-unstable"
DEFAULT_SCHEMA_VERSION = "1.0.0"

# owner-only read/write for anything nsm persists
DEFAULT_FILE_PERMISSIONS = 0o600

BACKUP_SUFFIX = ".backup"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"
TEMP_FILE_PREFIX = ".tmp-nsm-"

MAX_PACKAGE_NAME_LENGTH = 128

FREEZE_FILE_NAME = "nixpkgs.json"

# seconds
DEFAULT_COMMAND_TIMEOUT = 30.0
PROBE_COMMAND_TIMEOUT = 5.0
QUERY_COMMAND_TIMEOUT = 10.0
LONG_COMMAND_TIMEOUT = 120.0

MIN_FREE_DISK_SPACE = 1 * 1024 * 1024 * 1024

NIX_DIR = "/nix"
NIX_STORE_DIR = "/nix/store"
NIX_DAEMON_SOCKET = "/nix/var/nix/daemon-socket/socket"


class DescriptorFormat(str, Enum):
    SHELL = "shell"
    FLAKE = "flake"

    @property
    def filename(self) -> str:
        return f"{self.value}.nix"


SHELL_TEMPLATE = """{{ pkgs ? import <nixpkgs> {{}} }}:

pkgs.mkShell {{
  name = "nsm-managed-shell";

  packages = with pkgs; [
{PACKAGES}  ];
}}
"""

FLAKE_TEMPLATE = """{{
  description = "A development environment managed by nsm";

  inputs.nixpkgs.url = "github:nixos/nixpkgs/{CHANNEL}";

  outputs = {{ self, nixpkgs }}:
    let
      pkgs = nixpkgs.legacyPackages.x86_64-linux;
    in {{
      devShells.x86_64-linux.default = pkgs.mkShell {{
        buildInputs = with pkgs; [
{PACKAGES}        ];
      }};
    }};
}}
"""
