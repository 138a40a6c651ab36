# src/datamanager/cli.py
"""datamanager Command Line Interface.

Entry point for the datamanager CLI tool.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from datamanager import __version__
from datamanager.contracts.enums import LogLevel
from datamanager.contracts.errors import FatalSetupError
from datamanager.core.config import JobSettings, load_settings, redacted_settings

if TYPE_CHECKING:
    from datamanager.clients.base import RemoteServiceFactory
    from datamanager.jobs.registry import JobRegistry

__all__ = ["app"]

_registry_cache: JobRegistry | None = None

# Verbosity picked in the app callback, read by subcommands
_cli_state: dict[str, bool] = {"verbose": False, "json_logs": False}


def _get_registry() -> JobRegistry:
    """Job registry with built-in and installed jobs (built once)."""
    global _registry_cache

    from datamanager.jobs.registry import JobRegistry

    if _registry_cache is None:
        registry = JobRegistry()
        registry.register_builtin_jobs()
        registry.load_entrypoints()
        _registry_cache = registry
    return _registry_cache


def _build_factory(settings: JobSettings) -> RemoteServiceFactory:
    from datamanager.clients.webapi import WebApiServiceFactory

    return WebApiServiceFactory(settings.connection, organization_name=settings.organization_name)


app = typer.Typer(
    name="datamanager",
    help="datamanager: resumable bulk maintenance jobs against a remote record store.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"datamanager version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """datamanager: resumable bulk maintenance jobs against a remote record store."""
    from datamanager.core.logging import configure_logging

    _cli_state["verbose"] = verbose
    _cli_state["json_logs"] = json_logs
    configure_logging(json_output=json_logs, level=LogLevel.VERBOSE if verbose else LogLevel.INFORMATION)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")
    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")
    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", expand=False))


def _load_or_exit(settings: Path) -> JobSettings:
    """Load settings, turning every configuration error into exit code 1."""
    settings_path = settings.expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


def _check_job_names(names: list[str], registry: JobRegistry) -> None:
    unknown = [name for name in names if name not in registry]
    if unknown:
        _format_validation_error(
            title="Unknown Job",
            message=f"Unknown job(s): {', '.join(unknown)}",
            details=registry.names(),
            hint="Run 'datamanager jobs' to list the available jobs.",
        )
        raise typer.Exit(1)


@app.command()
def run(
    job_names: list[str] | None = typer.Argument(None, help="Jobs to run, in order (default: 'jobs' from settings)."),
    settings: Path = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Run one or more jobs."""
    from datamanager.core.logging import configure_logging
    from datamanager.core.identifiers import generate_run_id
    from datamanager.engine.processor import JobProcessor

    config = _load_or_exit(settings)
    names = list(job_names or config.jobs)
    if not names:
        _format_validation_error(
            title="No Job Selected",
            message="No job given on the command line and no 'jobs' entry in the settings.",
            hint="Pass job names: datamanager run delete-records --settings settings.yaml",
        )
        raise typer.Exit(1)
    registry = _get_registry()
    _check_job_names(names, registry)

    run_id = config.run_id or generate_run_id()
    config = config.model_copy(update={"run_id": run_id})
    log_file = config.logging.log_file / f"{run_id}.log" if config.logging.log_file is not None else None
    configure_logging(
        json_output=_cli_state["json_logs"] or config.logging.json_output,
        level=LogLevel.VERBOSE if _cli_state["verbose"] else config.logging.level,
        log_file=log_file,
    )

    factory = _build_factory(config)
    try:
        processor = JobProcessor(config, factory, transport_tuning=getattr(factory, "configure_transport", None))
        ok = processor.run(names, registry)
    except FatalSetupError as e:
        typer.secho(f"Fatal: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    finally:
        factory.close()

    if ok:
        typer.secho(f"Run {run_id} completed", fg=typer.colors.GREEN)
    else:
        typer.secho(f"Run {run_id} stopped: a job reported failure", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command()
def jobs() -> None:
    """List available jobs."""
    registry = _get_registry()
    names = registry.names()
    if not names:
        typer.echo("No jobs registered.")
        return
    for name in names:
        typer.echo(name)


@app.command()
def validate(
    settings: Path = typer.Option(..., "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Validate settings without running anything."""
    config = _load_or_exit(settings)
    if config.jobs:
        _check_job_names(config.jobs, _get_registry())
    if not config.connection.defined:
        typer.secho("Warning: connection.url is not set; 'run' needs it.", fg=typer.colors.YELLOW, err=True)

    typer.secho(f"Configuration valid: {settings.name}", fg=typer.colors.GREEN)
    for key, value in redacted_settings(config).items():
        typer.echo(f"  {key} = {value}")


if __name__ == "__main__":
    app()
