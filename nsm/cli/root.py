import json
import logging
from typing import List, Optional

import rich
import typer
from rich.markup import escape
from rich.table import Table
from typing_extensions import Annotated

from nsm._src.constants import DescriptorFormat
from nsm._src.doctor import Doctor
from nsm._src.exceptions import NotFoundError, SettingsValidationError, ToolchainError
from nsm._src.models.diagnostics import Status
from nsm.cli.common import CliState, fail, handle_errors, setup_logging, state
from nsm.cli.config import config_command


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)

app.add_typer(
    config_command,
    name="config",
    help="show and edit nsm settings",
    rich_help_panel="Settings",
)

STATUS_STYLES = {
    Status.OK: "green",
    Status.WARNING: "yellow",
    Status.ERROR: "red",
    Status.UNKNOWN: "magenta",
}

logger = logging.getLogger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[Optional[str], typer.Option(
        "--config",
        help="path to the settings file",
        envvar="NSM_CONFIG",
    )] = None,
    debug: Annotated[bool, typer.Option(
        "--debug",
        help="show debug logging",
    )] = False,
    quiet: Annotated[bool, typer.Option(
        "--quiet", "-q",
        help="only show errors",
    )] = False,
):
    """Manage Nix development environments"""
    setup_logging(debug=debug, quiet=quiet)
    ctx.obj = CliState(config)


@app.command()
def init(
    ctx: typer.Context,
    flake: bool = typer.Option(
        False,
        "--flake",
        help="create a flake.nix instead of a shell.nix",
    ),
):
    """Create a Nix environment in the current directory.

    The default packages and channel come from the settings file.
    """
    cli = state(ctx)
    with handle_errors():
        document = cli.settings.load()
        violations = cli.settings.validate(document)
        if violations:
            raise SettingsValidationError(violations, path=cli.settings.path)
        dialect = DescriptorFormat.FLAKE if flake else document.dialect
        path = cli.project.init(dialect, document.default_packages, document.channel_ref)
    typer.echo(f"Created {path.name}")


@app.command()
def add(
    ctx: typer.Context,
    packages: List[str] = typer.Argument(
        help="packages to add"
    ),
):
    """Add packages to the environment"""
    cli = state(ctx)
    with handle_errors():
        added, skipped = cli.project.add(packages)
    for pkg in skipped:
        typer.echo(f"{pkg} is already in the environment")
    if added:
        typer.echo(f"Added {', '.join(added)}")


@app.command()
def remove(
    ctx: typer.Context,
    packages: List[str] = typer.Argument(
        help="packages to remove"
    ),
):
    """Remove packages from the environment"""
    cli = state(ctx)
    with handle_errors():
        removed = cli.project.remove(packages)
    if removed:
        typer.echo(f"Removed {removed} package(s)")
    else:
        typer.echo("No matching packages found")


@app.command("list")
def list_packages(ctx: typer.Context):
    """List packages in the environment"""
    cli = state(ctx)
    with handle_errors():
        descriptor = cli.project.descriptor()
        packages = cli.project.packages()

    if not packages:
        typer.echo(f"No packages in {descriptor.path.name}")
        return

    table = Table(title=f"Packages in {descriptor.path.name}")
    table.add_column("package", justify="left", no_wrap=True)
    for pkg in packages:
        table.add_row(pkg)
    rich.print(table)


@app.command()
def convert(ctx: typer.Context):
    """Convert a shell.nix environment into a flake.nix"""
    cli = state(ctx)
    with handle_errors():
        channel = cli.settings.load().channel_ref
        path = cli.project.convert(channel)
    typer.echo(f"Created {path.name}")


@app.command()
def pin(
    ctx: typer.Context,
    package: str = typer.Argument(help="package to pin"),
    version: Optional[str] = typer.Argument(
        None,
        help="version to pin it to, defaults to the version nixpkgs offers",
    ),
):
    """Pin a package to a version"""
    cli = state(ctx)
    with handle_errors():
        if version is None:
            version = cli.toolchain.package_version(package)
        cli.settings.pin(package, version)
    typer.echo(f"Pinned {package} to {version}")


@app.command()
def unpin(
    ctx: typer.Context,
    package: str = typer.Argument(help="package to unpin"),
):
    """Remove the version pin of a package"""
    cli = state(ctx)
    with handle_errors():
        removed = cli.settings.unpin(package)
    if removed:
        typer.echo(f"Unpinned {package}")
    else:
        typer.echo(f"{package} is not pinned")


@app.command()
def doctor(
    ctx: typer.Context,
    fix: bool = typer.Option(
        False,
        "--fix",
        help="fix what can be fixed without elevated privileges",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="print the results as JSON",
    ),
):
    """Check the health of nsm, Nix and the current project"""
    cli = state(ctx)
    checker = Doctor(
        cli.settings,
        toolchain=cli.toolchain,
        project_dir=cli.project.directory,
        file_store=cli.settings.file_store,
    )

    report = checker.fix() if fix else None
    results = report.results if report is not None else checker.run()

    if json_output:
        data = {"results": [result.model_dump(mode="json") for result in results]}
        if report is not None:
            data["fix"] = report.model_dump(mode="json")
        typer.echo(json.dumps(data, indent=2))
    else:
        table = Table(title="nsm doctor")
        table.add_column("check", justify="left", no_wrap=True)
        table.add_column("status", justify="left", no_wrap=True)
        table.add_column("message", justify="left")
        for result in results:
            style = STATUS_STYLES[result.status]
            table.add_row(result.name, f"[{style}]{result.status.value}[/{style}]", escape(result.message))
        rich.print(table)

        if report is not None:
            for applied in report.applied:
                typer.echo(f"fixed: {applied}")
            for manual in report.manual:
                typer.echo(f"manual: {manual}")
        else:
            for result in results:
                if result.status is not Status.OK and result.fix:
                    typer.echo(f"{result.name}: {result.fix}")

    if any(result.status is Status.ERROR for result in results):
        raise typer.Exit(code=1)


@app.command()
def info(ctx: typer.Context):
    """Show information about the Nix installation and this project"""
    cli = state(ctx)
    if not cli.toolchain.is_installed():
        fail("Nix is not installed")

    system = cli.toolchain.system_info()
    system["settings"] = str(cli.settings.path)
    try:
        system["profile_packages"] = str(len(cli.toolchain.installed_packages()))
    except ToolchainError as err:
        logger.debug("Failed to list profile packages: %s", err)
    try:
        system["descriptor"] = str(cli.project.descriptor().path)
    except NotFoundError:
        system["descriptor"] = "none"

    table = Table(title="System information")
    table.add_column("key", justify="left", no_wrap=True)
    table.add_column("value", justify="left")
    for key, value in system.items():
        table.add_row(key, value)
    rich.print(table)


@app.command()
def clean(ctx: typer.Context):
    """Collect garbage in the Nix store"""
    cli = state(ctx)
    with handle_errors():
        result = cli.toolchain.collect_garbage()
    if result.stdout.strip():
        typer.echo(result.stdout.strip())
    typer.echo("Garbage collection finished")


@app.command()
def upgrade(ctx: typer.Context):
    """Update the Nix channels"""
    cli = state(ctx)
    with handle_errors():
        cli.toolchain.update_channel()
    typer.echo("Channels updated")


@app.command()
def run(ctx: typer.Context):
    """Enter the environment with nix-shell or nix develop"""
    cli = state(ctx)
    with handle_errors():
        cmd, args = cli.project.shell_command()
        typer.echo(f"Launching {' '.join([cmd, *args])}...")
        code = cli.toolchain.interactive(cmd, args, cwd=str(cli.project.directory))
    if code:
        raise typer.Exit(code=code)


@app.command()
def freeze(ctx: typer.Context):
    """Record the nixpkgs channel and system in nixpkgs.json"""
    cli = state(ctx)
    with handle_errors():
        channel = cli.settings.load().channel_ref
        system = cli.toolchain.current_system()
        path = cli.project.freeze(system, channel)
    typer.echo(f"Froze nixpkgs {channel} for {system} in {path.name}")
