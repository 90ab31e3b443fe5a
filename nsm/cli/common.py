import logging
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from nsm._src.exceptions import NsmError
from nsm._src.project import Project
from nsm._src.settings import SettingsStore
from nsm._src.toolchain import Toolchain


err_console = Console(stderr=True)


class CliState():
    """Objects shared by every command of one invocation"""
    def __init__(self, config: str | None = None, directory: str | Path = "."):
        self.settings = SettingsStore(config)
        self.toolchain = Toolchain()
        self.project = Project(directory, file_store=self.settings.file_store)


def state(ctx: typer.Context) -> CliState:
    if not isinstance(ctx.obj, CliState):
        ctx.obj = CliState()
    return ctx.obj


def setup_logging(debug: bool = False, quiet: bool = False) -> None:
    level = logging.INFO
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR

    logger = logging.getLogger("nsm")
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        logger.addHandler(RichHandler(console=err_console, show_path=False))


@contextmanager
def handle_errors():
    """Report nsm errors in red and exit with status 1."""
    try:
        yield
    except NsmError as err:
        err_console.print(f"[red]Error:[/red] {escape(err.msg)}", markup=True, highlight=False, soft_wrap=True)
        raise typer.Exit(code=1)


def fail(msg: str) -> None:
    err_console.print(f"[red]Error:[/red] {escape(msg)}", markup=True, highlight=False, soft_wrap=True)
    raise typer.Exit(code=1)
