"""claude-shell serve — run the JSON-RPC server on stdin/stdout."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from claude_shell.config.parser import ConfigError, load_config
from claude_shell.logs import configure_logging
from claude_shell.server.stdio import serve as run_server


@click.command()
@click.option(
    "-c", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Diagnostic log level (stderr). Overrides the config file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Shorthand for --log-level DEBUG.")
def serve(config_file: str | None, log_level: str | None, verbose: bool) -> None:
    """Serve tool calls over stdin/stdout until stdin closes."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if verbose:
        log_level = "DEBUG"
    configure_logging(log_level or config.log_level)

    try:
        asyncio.run(run_server(config))
    except OSError as exc:
        # stdin/stdout could not be attached.
        click.echo(f"Error: cannot open stdio transport: {exc}", err=True)
        raise SystemExit(1) from exc
