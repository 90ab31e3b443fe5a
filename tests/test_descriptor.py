"""Tests for locating and editing the package list of shell.nix and flake.nix."""

from __future__ import annotations

import pytest

from nsm._src.constants import DescriptorFormat
from nsm._src.descriptor.descriptor import (
    Descriptor,
    as_dialect,
    contains_package,
    extract_packages,
    find_section,
    inject_packages,
    remove_packages,
    render,
)
from nsm._src.exceptions import FormatError, NotFoundError


SHELL = "packages = with pkgs; [\n    gcc\n    python3\n];"

SHELL_FILE = """{ pkgs ? import <nixpkgs> {} }:

pkgs.mkShell {
  # tools for the build
  packages = with pkgs; [
    gcc # the compiler
    # python3
    jq
  ];

  shellHook = ''
    echo "ready"
  '';
}
"""

FLAKE_BARE = """{
  outputs = { self, nixpkgs }: {
    devShells.x86_64-linux.default = pkgs.mkShell {
      buildInputs = [ pkgs.git pkgs.curl ];
    };
  };
}
"""


# ---------------------------------------------------------------------------
# Worked examples
# ---------------------------------------------------------------------------


class TestWorkedExamples:
    def test_extraction(self):
        assert extract_packages(SHELL, "shell") == ["gcc", "python3"]

    def test_injection_inserts_before_closing_bracket(self):
        updated = inject_packages(SHELL, "shell", ["nodejs"])

        assert updated == "packages = with pkgs; [\n    gcc\n    python3\n    nodejs\n];"

    def test_removal(self):
        updated, removed = remove_packages(SHELL, "shell", ["gcc"])

        assert updated == "packages = with pkgs; [\n    python3\n];"
        assert removed == 1
        assert extract_packages(updated, "shell") == ["python3"]


# ---------------------------------------------------------------------------
# Shell dialect
# ---------------------------------------------------------------------------


class TestShellDialect:
    def test_comments_are_not_packages(self):
        assert extract_packages(SHELL_FILE, "shell") == ["gcc", "jq"]

    def test_injection_keeps_everything_outside_the_section(self):
        updated = inject_packages(SHELL_FILE, "shell", ["ripgrep"])

        before, after = SHELL_FILE.split("  ];", 1)
        assert updated.startswith(before)
        assert updated.endswith("  ];" + after)
        assert "    ripgrep\n  ];" in updated
        assert extract_packages(updated, "shell") == ["gcc", "jq", "ripgrep"]

    def test_inject_then_remove_restores_content(self):
        updated = inject_packages(SHELL_FILE, "shell", ["ripgrep", "fd"])
        restored, removed = remove_packages(updated, "shell", ["ripgrep", "fd"])

        assert removed == 2
        assert restored == SHELL_FILE

    def test_single_line_section(self):
        content = "packages = with pkgs; [ gcc python3 ];"

        assert extract_packages(content, "shell") == ["gcc", "python3"]
        assert inject_packages(content, "shell", ["jq"]) == "packages = with pkgs; [ gcc python3 jq ];"

        updated, removed = remove_packages(content, "shell", ["gcc"])
        assert updated == "packages = with pkgs; [ python3 ];"
        assert removed == 1

    def test_empty_single_line_section(self):
        assert inject_packages("packages = [];", "shell", ["jq"]) == "packages = [jq];"

    def test_several_packages_per_line(self):
        content = "packages = with pkgs; [\n    gcc python3 jq\n];"

        updated, removed = remove_packages(content, "shell", ["python3"])

        assert removed == 1
        assert updated == "packages = with pkgs; [\n    gcc jq\n];"

    def test_remove_keeps_trailing_comment_of_partial_line(self):
        content = "packages = with pkgs; [\n    gcc jq # tools\n];"

        updated, _ = remove_packages(content, "shell", ["gcc"])

        assert updated == "packages = with pkgs; [\n    jq # tools\n];"

    def test_bracket_inside_comment_does_not_close_section(self):
        content = "packages = [\n    gcc # see [docs]\n    jq\n];"

        assert extract_packages(content, "shell") == ["gcc", "jq"]

    def test_commented_out_marker_is_skipped(self):
        content = "# packages = [ old ];\npackages = [\n  new\n];"

        assert extract_packages(content, "shell") == ["new"]

    def test_build_inputs_marker_is_accepted(self):
        content = "pkgs.mkShell {\n  buildInputs = [\n    pkgs.hello\n  ];\n}"

        assert extract_packages(content, "shell") == ["pkgs.hello"]

    def test_injection_uses_entry_indentation(self):
        content = "  packages = [\n      gcc\n  ];"

        assert inject_packages(content, "shell", ["jq"]) == "  packages = [\n      gcc\n      jq\n  ];"

    def test_injection_into_empty_multiline_section(self):
        content = "  packages = [\n  ];"

        assert inject_packages(content, "shell", ["jq"]) == "  packages = [\n    jq\n  ];"

    def test_nested_list_stays_one_entry(self):
        content = "packages = [\n  gcc\n  (python3.withPackages (ps: [ ps.numpy ]))\n];\n"

        assert extract_packages(content, "shell") == ["gcc", "(python3.withPackages (ps: [ ps.numpy ]))"]
        assert inject_packages(content, "shell", ["jq"]) == (
            "packages = [\n  gcc\n  (python3.withPackages (ps: [ ps.numpy ]))\n  jq\n];\n"
        )

    def test_nested_entry_over_several_lines(self):
        content = "packages = [\n  (python3.withPackages (ps: [\n    ps.numpy\n  ]))\n  jq\n];"

        assert extract_packages(content, "shell") == ["(python3.withPackages (ps: [ ps.numpy ]))", "jq"]

        updated, removed = remove_packages(content, "shell", ["ps.numpy", "jq"])
        assert removed == 1
        assert updated == "packages = [\n  (python3.withPackages (ps: [\n    ps.numpy\n  ]))\n];"

    def test_remove_unknown_package_changes_nothing(self):
        updated, removed = remove_packages(SHELL, "shell", ["nodejs"])

        assert removed == 0
        assert updated == SHELL


# ---------------------------------------------------------------------------
# Flake dialect
# ---------------------------------------------------------------------------


class TestFlakeDialect:
    def test_bare_list(self):
        assert extract_packages(FLAKE_BARE, "flake") == ["pkgs.git", "pkgs.curl"]

    def test_with_pkgs_list(self):
        content = render(DescriptorFormat.FLAKE, ["git", "curl"])

        assert extract_packages(content, "flake") == ["git", "curl"]

    def test_inject_into_bare_list(self):
        updated = inject_packages(FLAKE_BARE, "flake", ["pkgs.jq"])

        assert "buildInputs = [ pkgs.git pkgs.curl pkgs.jq ];" in updated

    def test_inject_into_rendered_flake(self):
        content = render(DescriptorFormat.FLAKE, ["git"])
        updated = inject_packages(content, "flake", ["jq"])

        assert "          git\n          jq\n        ];" in updated

    def test_nested_list_in_flake(self):
        content = "buildInputs = with pkgs; [\n  gcc\n  (python3.withPackages (ps: [ ps.numpy ]))\n];\n"

        assert extract_packages(content, "flake") == ["gcc", "(python3.withPackages (ps: [ ps.numpy ]))"]
        assert inject_packages(content, "flake", ["jq"]).endswith("ps.numpy ]))\n  jq\n];\n")

    def test_bracket_inside_comment_in_flake(self):
        content = "packages = with pkgs; [\n  git # pinned, see [1]\n  curl\n];"

        assert extract_packages(content, "flake") == ["git", "curl"]

    def test_remove_from_flake(self):
        updated, removed = remove_packages(FLAKE_BARE, "flake", ["pkgs.curl"])

        assert removed == 1
        assert "buildInputs = [ pkgs.git ];" in updated


# ---------------------------------------------------------------------------
# Errors and helpers
# ---------------------------------------------------------------------------


class TestMissingSection:
    def test_extract_returns_empty_list(self):
        assert extract_packages("{ pkgs }: pkgs.mkShell {}", "shell") == []

    def test_unterminated_section_is_missing(self):
        assert find_section("packages = [\n  gcc\n", "shell") is None

    def test_inject_raises_format_error(self):
        with pytest.raises(FormatError):
            inject_packages("{ pkgs }: pkgs.mkShell {}", "shell", ["gcc"])

    def test_remove_reports_nothing(self):
        content = "{ }"
        assert remove_packages(content, "flake", ["gcc"]) == (content, 0)

    def test_unknown_dialect(self):
        with pytest.raises(FormatError):
            as_dialect("default.nix")


class TestContainsPackage:
    def test_exact_token_match(self):
        content = "packages = [ golang ];"

        assert contains_package(content, "shell", "golang")
        assert not contains_package(content, "shell", "go")

    def test_comment_does_not_count(self):
        content = "packages = [\n  # go\n];"

        assert not contains_package(content, "shell", "go")


class TestRender:
    def test_shell_template_lists_packages(self):
        content = render("shell", ["gcc", "jq"], "nixos-24.05")

        assert "pkgs.mkShell" in content
        assert extract_packages(content, "shell") == ["gcc", "jq"]

    def test_empty_template_has_placeholder_comment(self):
        content = render("shell")

        assert "# Add your packages here" in content
        assert extract_packages(content, "shell") == []

    def test_flake_template_uses_channel(self):
        content = render("flake", ["git"], "nixos-24.05")

        assert 'inputs.nixpkgs.url = "github:nixos/nixpkgs/nixos-24.05";' in content


class TestDetection:
    def test_shell_takes_precedence(self, project_dir):
        (project_dir / "shell.nix").write_text(render("shell"))
        (project_dir / "flake.nix").write_text(render("flake"))

        descriptor = Descriptor(project_dir)

        assert descriptor.dialect is DescriptorFormat.SHELL
        assert descriptor.path == project_dir / "shell.nix"

    def test_flake_only(self, project_dir):
        (project_dir / "flake.nix").write_text(render("flake"))

        assert Descriptor(project_dir).dialect is DescriptorFormat.FLAKE

    def test_no_descriptor(self, project_dir):
        with pytest.raises(NotFoundError):
            Descriptor(project_dir)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(NotFoundError):
            Descriptor(tmp_path / "nowhere")
