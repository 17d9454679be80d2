"""Main Typer application, entry point for the ``stampede`` CLI."""

from __future__ import annotations

import typer

from stampede import __version__
from stampede.cli.run import run_cmd

app = typer.Typer(
    name="stampede",
    help="Point a herd of virtual users at one HTTP endpoint.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run a load test against one URL.")(run_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"stampede {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Stampede: constant-concurrency HTTP load generation."""
