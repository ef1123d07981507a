"""servershell CLI Entry Point.

This module provides the command-line interface for attaching a shell
session to a running server.

    servershell connect .meteor/local/shell          # interactive REPL
    echo 'Meteor.users.find().count()' | servershell connect .meteor/local/shell
    servershell status .meteor/local/shell
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer

from servershell.core.config import (
    ConfigurationError,
    Settings,
    get_settings,
)
from servershell.core.exceptions import ProtocolViolationError
from servershell.core.logging import configure_logging
from servershell.shell.client import ShellClient
from servershell.shell.info import describe_info
from servershell.shell.io import ShellIO

log = structlog.get_logger()

app = typer.Typer(
    name="servershell",
    help="Attach an interactive or one-shot shell session to a running server",
    no_args_is_help=True,
)


def load_config_callback(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to configuration file", is_eager=True
    ),
) -> Optional[Path]:
    """Load configuration file if provided and configure logging."""
    if config is not None and not config.exists():
        typer.echo(f"Error: Config file '{config}' not found", err=True)
        raise typer.Exit(code=1)

    try:
        settings = get_settings(force_reload=True, system_config_path=config)
    except ConfigurationError as e:
        typer.echo(f"Error loading config: {e}", err=True)
        raise typer.Exit(code=1)

    configure_logging(settings.log)
    if config is not None:
        log.info("config_loaded", path=str(config))
    return config


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c",
        callback=load_config_callback,
        is_eager=True,
        help="Path to configuration file",
    ),
) -> None:
    """Server shell client."""
    pass


def _with_reconnect_delay(settings: Settings, delay: Optional[float]) -> Settings:
    if delay is None:
        return settings
    connection = settings.connection.model_copy(update={"reconnect_delay": delay})
    return settings.model_copy(update={"connection": connection})


@app.command()
def connect(
    shell_dir: Path = typer.Argument(..., help="Directory containing the server's info file"),
    reconnect_delay: Optional[float] = typer.Option(
        None, "--reconnect-delay", min=0.001, help="Seconds between reconnect attempts"
    ),
) -> None:
    """Attach to the server shell (interactive on a terminal, batch otherwise)."""
    settings = _with_reconnect_delay(get_settings(), reconnect_delay)

    async def run_client() -> int:
        client = ShellClient(shell_dir, ShellIO.from_stdio(), settings)
        return await client.run()

    log.debug("connecting", shell_dir=str(shell_dir))
    try:
        code = asyncio.run(run_client())
    except ProtocolViolationError as e:
        log.error("protocol_violation", **e.context)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        raise typer.Exit(code=130)

    raise typer.Exit(code=code)


@app.command()
def status(
    shell_dir: Path = typer.Argument(..., help="Directory containing the server's info file"),
) -> None:
    """Show whether the server currently accepts shell connections."""
    info = describe_info(shell_dir, get_settings().connection.info_file)
    if info.detail:
        typer.echo(f"{info.state}: {info.detail}")
    else:
        typer.echo(info.state)

    if not info.usable:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
