"""perceive CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from perceive.cli.init import init_cmd
from perceive.cli.items import hide_cmd, tag_cmd
from perceive.cli.model import model_app
from perceive.cli.search import search_cmd
from perceive.cli.source import source_app
from perceive.cli.status import status_cmd
from perceive.cli.sync import sync_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("perceive")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"perceive {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="perceive",
    help=(
        "perceive: local semantic search over your files and bookmarks.\n\n"
        "  perceive source add   Register a directory or bookmarks file.\n"
        "  perceive sync         Index new and changed items.\n"
        "  perceive search       Find items by meaning."
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
    """perceive: local semantic search."""


app.command("init")(init_cmd)
app.command("sync")(sync_cmd)
app.command("search")(search_cmd)
app.command("hide")(hide_cmd)
app.command("tag")(tag_cmd)
app.command("status")(status_cmd)
app.add_typer(source_app, name="source")
app.add_typer(model_app, name="model")


@app.command("version")
def version_cmd() -> None:
    """Show the installed perceive version."""
    typer.echo(f"perceive {_installed_version()}")


if __name__ == "__main__":
    app()
