"""CLI entry point for ptychat."""

from __future__ import annotations

import logging

import typer
import uvicorn

from ptychat import __version__
from ptychat.config import PtyChatConfig

app = typer.Typer(
    name="ptychat",
    help="Run assistant CLI sessions in PTYs and stream them to remote clients.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def serve(
    host: str | None = typer.Option(
        None, "--host", help="Address to bind (default from config: 127.0.0.1)."
    ),
    port: int | None = typer.Option(
        None, "--port", "-p", help="Port to bind (default from config: 3001)."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
) -> None:
    """Start the session server (REST API + WebSocket stream)."""
    from ptychat.server.app import create_app

    setup_logging(verbose)

    config = PtyChatConfig.load(config_file)
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    command = " ".join([config.session.command, *config.session.args])
    typer.echo(f"ptychat v{__version__}")
    typer.echo(f"Sessions run: {command}")
    typer.echo(f"Listening on http://{config.server.host}:{config.server.port}")
    typer.echo(f"WebSocket at ws://{config.server.host}:{config.server.port}/ws")
    typer.echo("---")

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if verbose else "info",
    )


@app.command()
def version() -> None:
    """Print the version."""
    typer.echo(f"ptychat v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
