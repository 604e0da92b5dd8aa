import functools
import importlib.metadata
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.traceback import Traceback

from .data.config_schemas import StrictnessLevel
from .data.environment_schemas import ActiveEnvironment
from .exceptions import AutoEnvError
from .management.config_manager import ConfigManager
from .management.descriptor_parser import read_descriptor
from .management.directory_matcher import is_target_directory
from .management.hook_manager import HookInstaller
from .management.manager_selector import (
    build_manager,
    select_manager,
    select_venv_tool,
)
from .management.resolver import EnvironmentResolver
from .management.validation_manager import DescriptorValidator
from .state import APP_STATE
from .utils import ENV_PREFIX, env_flag

console = Console()
error_console = Console(stderr=True, highlight=False)
logger = structlog.get_logger(__name__)


def version_callback(value: bool):
    """Prints the application version and exits."""
    if value:
        try:
            version = importlib.metadata.version("conda-autoenv")
            console.print(f"conda-autoenv version: {version}")
        except importlib.metadata.PackageNotFoundError:
            console.print("conda-autoenv version: unknown (package not installed)")
        raise typer.Exit()


def setup_logging(verbose: bool):
    # The hook runs on every prompt, so anything below WARNING stays hidden
    # unless asked for. Logs always go to stderr; stdout is evaluated by bash.
    log_level = logging.DEBUG if verbose else logging.WARNING
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processor=structlog.dev.ConsoleRenderer(),
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def handle_exceptions(func):
    """A decorator that turns failures into one diagnostic line and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except KeyboardInterrupt:
            error_console.print("conda-autoenv: interrupted")
            raise typer.Exit(code=130)
        except AutoEnvError as e:
            error_console.print(f"conda-autoenv: [bold red]Error:[/bold red] {escape(str(e))}")
            if APP_STATE.verbose_mode:
                error_console.print(
                    Traceback.from_exception(type(e), e, e.__traceback__)
                )
            raise typer.Exit(code=1)
        except Exception as e:
            error_console.print(
                f"conda-autoenv: [bold red]Error:[/bold red] {escape(f'[unexpected] {e}')}"
            )
            if APP_STATE.verbose_mode:
                error_console.print(
                    Traceback.from_exception(
                        type(e), e, e.__traceback__, show_locals=True
                    )
                )
            raise typer.Exit(code=1)

    return wrapper


app = typer.Typer(
    name="conda-autoenv",
    help="Automatically activate (or create) conda and virtual environments when you cd into a project.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose DEBUG logging on stderr."
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the application's version and exit.",
    ),
):
    """Handles global options."""
    verbose = verbose or env_flag(f"{ENV_PREFIX}DEBUG")
    APP_STATE.verbose_mode = verbose
    setup_logging(verbose)


@app.command()
@handle_exceptions
def hook(
    executable: str = typer.Option(
        "conda-autoenv",
        "--executable",
        help="Command the hook should call on every prompt.",
    ),
):
    """
    Prints the bash code that installs the auto-activation hook.

    Add this to your `~/.bashrc`:

    `eval "$(conda-autoenv hook)"`
    """
    installer = HookInstaller(executable=executable)
    typer.echo(installer.install_hook(), nl=False)


@app.command()
@handle_exceptions
def resolve():
    """
    Runs one resolution pass for the current directory and prints the
    activation code for the shell to evaluate. Called by the hook.
    """
    config = ConfigManager().load()
    resolution = EnvironmentResolver(config).resolve_and_activate()
    logger.debug("cli.resolve", state=resolution.state.value, target=resolution.target)
    typer.echo(resolution.render(), nl=False)


@app.command()
@handle_exceptions
def run(
    init: bool = typer.Option(
        False,
        "--init",
        help="Resolve even when not attached to a terminal (e.g. inside eval).",
    ),
):
    """
    Resolves the current directory directly, without installing the hook.

    The current directory is used as the only target directory. The
    activation code is printed, so use it as
    `eval "$(conda-autoenv run --init)"`.
    """
    if not init and not sys.stdin.isatty():
        error_console.print(
            "conda-autoenv: not running interactively; pass --init to resolve the current directory."
        )
        raise typer.Exit(code=1)

    cwd = Path.cwd()
    config = ConfigManager().load().with_targets([str(cwd)])
    resolution = EnvironmentResolver(config, cwd=cwd).resolve_and_activate()
    typer.echo(resolution.render(), nl=False)


@app.command()
@handle_exceptions
def validate(
    descriptor: Optional[Path] = typer.Argument(
        None, help="Descriptor to check. Defaults to the configured file in the current directory."
    ),
    strictness: Optional[int] = typer.Option(
        None, "--strictness", "-s", min=0, max=2, help="Override the configured strictness level."
    ),
):
    """Checks an environment descriptor without creating or activating anything."""
    config = ConfigManager().load()
    if strictness is not None:
        config = config.model_copy(update={"strictness": StrictnessLevel(strictness)})

    path = descriptor or Path.cwd() / config.descriptor_filename
    parsed = read_descriptor(path)
    DescriptorValidator(config).validate(parsed)

    if config.strictness == StrictnessLevel.NONE:
        console.print(f"[yellow]Validation skipped (strictness is 0) for {path.name}.[/yellow]")
    else:
        console.print(f"[green]✓[/green] {path.name} is valid and safe.")


@app.command()
@handle_exceptions
def status():
    """Shows the effective configuration and what would happen in this directory."""
    config = ConfigManager().load()
    cwd = Path.cwd()
    manager_kind = select_manager(config)
    resolver = EnvironmentResolver(config, cwd=cwd)
    targets = resolver.target_directories(build_manager(manager_kind))
    active = ActiveEnvironment.from_environ(os.environ)

    table = Table(title="conda-autoenv status")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row(
        "Package manager",
        f"{manager_kind.value} (preferred: {config.package_manager.value})",
    )
    table.add_row(
        "Venv tool",
        f"{select_venv_tool(config).value} (preferred: {config.venv_tool.value})",
    )
    table.add_row("Strictness", str(int(config.strictness)))
    table.add_row("Target directories", "\n".join(targets) or "[red]none[/red]")
    table.add_row(
        "Current directory in scope",
        "yes" if targets and is_target_directory(cwd, targets) else "no",
    )
    table.add_row(
        "Descriptor",
        "found" if (cwd / config.descriptor_filename).is_file() else "not found",
    )
    table.add_row(
        "Active environment",
        active.conda_name or active.virtual_env or "[dim]none[/dim]",
    )
    console.print(table)
