"""iterforge CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from iterforge.cli.init import init_cmd
from iterforge.cli.iterate import iterate_cmd
from iterforge.cli.versions import versions_app


def _installed_version() -> str:
    try:
        return importlib.metadata.version("iterforge")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"iterforge {_installed_version()}")
        raise typer.Exit()


def setup_logging(verbose: bool = False) -> None:
    """Route library logging to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # Reduce noise from third-party libraries
    for name in ("LiteLLM", "litellm", "httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


app = typer.Typer(
    name="iterforge",
    help=(
        "iterforge — iterative code generation with versioned snapshots.\n\n"
        "  iterforge iterate   Turn a change request into a new committed version.\n"
        "  iterforge versions  Browse, inspect and diff version history."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline stages and retrieval details."),
    ] = False,
) -> None:
    """iterforge — iterative code generation with versioned snapshots."""
    setup_logging(verbose)


app.command("init")(init_cmd)
app.command("iterate")(iterate_cmd)
app.add_typer(versions_app, name="versions")


@app.command("version")
def version_cmd() -> None:
    """Show the installed iterforge version."""
    typer.echo(f"iterforge {_installed_version()}")


if __name__ == "__main__":
    app()
