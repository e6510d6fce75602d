from __future__ import annotations

from functools import partial
from pathlib import Path

import anyio
import typer

from .. import __version__
from ..config import HOME_CONFIG_PATH, ConfigError, load_settings
from ..errors import StoreError
from ..logging import get_logger, setup_logging
from ..runtime import serve

logger = get_logger(__name__)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Telegram bot relaying text and voice messages to a language model.",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    _ = version


@app.command()
def run(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the TOML config (default: ./.voxrelay/voxrelay.toml or {HOME_CONFIG_PATH}).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log Telegram requests, ffmpeg output, and job state changes.",
    ),
) -> None:
    """Start polling Telegram and answering messages."""
    setup_logging(debug=debug)
    try:
        settings = load_settings(config)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1) from e
    try:
        anyio.run(partial(serve, settings))
    except StoreError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        logger.info("shutdown.interrupted")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
