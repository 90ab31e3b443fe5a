import typer
import yaml

from nsm._src.migrations import CURRENT_VERSION
from nsm.cli.common import fail, handle_errors, state


config_command = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(value)
    if isinstance(value, dict):
        return yaml.safe_dump(value, sort_keys=False, default_flow_style=False).rstrip()
    return str(value)


@config_command.command()
def show(ctx: typer.Context):
    """Print the current settings"""
    settings = state(ctx).settings
    with handle_errors():
        document = settings.load()
    typer.echo(f"# {settings.path}")
    typer.echo(yaml.safe_dump(document.to_yaml_dict(), sort_keys=False, default_flow_style=False).rstrip())


@config_command.command()
def get(
    ctx: typer.Context,
    key: str = typer.Argument(
        help="setting to read, e.g. channel.url or pins.<package>"
    ),
):
    """Print a single setting"""
    settings = state(ctx).settings
    with handle_errors():
        try:
            value = settings.get_value(key)
        except KeyError:
            fail(f"unknown setting: {key}")
    typer.echo(_format_value(value))


@config_command.command("set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(
        help="setting to change"
    ),
    value: str = typer.Argument(
        help="new value, default.packages takes a comma separated list"
    ),
):
    """Change a single setting"""
    settings = state(ctx).settings
    with handle_errors():
        try:
            settings.set_value(key, value)
        except KeyError:
            fail(f"unknown setting: {key}")
    typer.echo(f"Set {key} to {value}")


@config_command.command()
def validate(ctx: typer.Context):
    """Check the settings file for errors"""
    settings = state(ctx).settings
    with handle_errors():
        violations = settings.validate(settings.load())
    if violations:
        for violation in violations:
            typer.echo(f"- {violation}")
        fail(f"{len(violations)} problem(s) in {settings.path}")
    typer.echo("Configuration is valid")


@config_command.command()
def migrate(ctx: typer.Context):
    """Upgrade the settings file to the current schema version"""
    settings = state(ctx).settings
    with handle_errors():
        schema = settings.schema_state()
        written = settings.migrate()
    if written:
        typer.echo(f"Migrated settings to version {CURRENT_VERSION}")
    elif schema == "unknown":
        typer.echo("Settings version is not known to this nsm, left untouched")
    elif schema == "missing":
        typer.echo(f"No settings file at {settings.path}")
    else:
        typer.echo(f"Settings are already at version {CURRENT_VERSION}")


@config_command.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes", "-y",
        help="do not ask for confirmation",
    ),
):
    """Reset the settings to defaults, the old file is backed up"""
    settings = state(ctx).settings
    if not yes:
        typer.confirm(f"Reset {settings.path} to defaults?", abort=True)
    with handle_errors():
        settings.reset()
    typer.echo("Settings reset to defaults")
