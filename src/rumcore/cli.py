# src/rumcore/cli.py
"""rumcore Command Line Interface.

Inspect and replay the offline backlog a FileStorage-backed client leaves
behind when the collector is unreachable.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from pydantic import ValidationError

from rumcore import __version__
from rumcore.config import load_settings
from rumcore.transport import FileStorage, OfflineBacklog, Transport

__all__ = ["app"]

app = typer.Typer(
    name="rumcore",
    help="rumcore: telemetry pipeline tooling.",
    no_args_is_help=True,
)

backlog_app = typer.Typer(help="Inspect, clear and replay the offline backlog.", no_args_is_help=True)
app.add_typer(backlog_app, name="backlog")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rumcore version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load a .env file so RUM_* overrides apply to --config files.

    Raises:
        typer.Exit: If an explicit env_file does not exist.
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
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs.",
    ),
) -> None:
    """rumcore: telemetry pipeline tooling."""
    from rumcore.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@app.command()
def version() -> None:
    """Show the installed rumcore version."""
    typer.echo(__version__)


def _open_backlog(directory: Path) -> OfflineBacklog:
    if not directory.is_dir():
        typer.echo(f"Error: Backlog directory not found: {directory}", err=True)
        raise typer.Exit(1)
    return OfflineBacklog(FileStorage(directory))


@backlog_app.command("show")
def backlog_show(
    directory: Path = typer.Option(..., "--dir", "-d", help="Backlog directory (transport.backlog_dir)."),
    last: int = typer.Option(10, "--last", "-n", min=0, help="Number of most recent events to print."),
) -> None:
    """Print the backlog size and its most recent events as JSON."""
    events = _open_backlog(directory).peek()
    typer.echo(f"{len(events)} event(s) in backlog")
    shown = events[-last:] if last else []
    for event in shown:
        typer.echo(json.dumps(event, separators=(",", ":"), ensure_ascii=False))


@backlog_app.command("clear")
def backlog_clear(
    directory: Path = typer.Option(..., "--dir", "-d", help="Backlog directory (transport.backlog_dir)."),
) -> None:
    """Discard every event in the backlog."""
    backlog = _open_backlog(directory)
    count = len(backlog.peek())
    if not backlog.clear():
        typer.echo(f"Error: Could not clear backlog in {directory}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Cleared {count} event(s)")


@backlog_app.command("replay")
def backlog_replay(
    config: Path = typer.Option(..., "--config", "-c", help="Path to settings YAML file."),
) -> None:
    """Deliver the backlog to the configured collector now.

    Exits with code 1 when delivery failed and the events were persisted
    again.
    """
    try:
        settings = load_settings(config.expanduser())
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {config}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None

    if settings.transport.backlog_dir is None:
        typer.echo("Error: transport.backlog_dir is not configured", err=True)
        raise typer.Exit(1)
    if settings.endpoint is None:
        typer.echo("Error: endpoint is not configured", err=True)
        raise typer.Exit(1)

    transport = Transport.from_settings(settings)
    count = transport.pending
    if count == 0:
        transport.close()
        typer.echo("Backlog is empty")
        return
    try:
        delivered = asyncio.run(transport.flush(urgent=True))
    finally:
        transport.close()
    if not delivered:
        typer.echo(f"Delivery failed, {count} event(s) persisted again", err=True)
        raise typer.Exit(1)
    typer.echo(f"Replayed {count} event(s)")
