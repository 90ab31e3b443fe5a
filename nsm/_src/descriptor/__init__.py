# This module reads and edits the package list of a project's
# environment descriptor. Two dialects are supported: shell.nix
# (`pkgs.mkShell { packages = with pkgs; [ ... ]; }`) and flake.nix
# (`buildInputs = [ ... ]` inside a devShell).
# Only the text between the brackets of the package list is ever
# touched, everything else in the file is passed through as is.
