"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from quarry.cli.ingest import ingest_cmd
from quarry.cli.monitor import monitor_cmd
from quarry.cli.remove import remove_cmd
from quarry.cli.search import search_cmd
from quarry.cli.sources import sources_app
from quarry.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry: multi-tenant knowledge base with hybrid retrieval.\n\n"
        "  quarry sources add  Register a URL, file or article for a tenant.\n"
        "  quarry ingest       Chunk, embed and store registered sources.\n"
        "  quarry search       Vector + lexical search, optionally reranked."
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
) -> None:
    """Quarry: multi-tenant knowledge base with hybrid retrieval."""


app.add_typer(sources_app, name="sources")
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("monitor")(monitor_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
