"""perceive model commands.

Commands:
  perceive model add NAME --weights PATH   register a model or a new version of it
  perceive model list                      show models, versions and which is active
  perceive model activate NAME             switch search and indexing to a ready version
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from perceive.app import Perceive
from perceive.cli.common import DbOption, console, session
from perceive.cli.errors import err_model_not_found
from perceive.db.models import ModelStatus

model_app = typer.Typer(
    name="model",
    help="Manage embedding models (add, list, activate).",
    add_completion=False,
)

_STATUS_STYLE = {
    ModelStatus.PENDING: "[dim]pending[/]",
    ModelStatus.READY: "[green]ready[/]",
    ModelStatus.FAILED: "[red]failed[/]",
}


@model_app.command("add")
def model_add_cmd(
    name: Annotated[str, typer.Argument(help="Model name, e.g. all-MiniLM-L6-v2.")],
    weights: Annotated[
        str,
        typer.Option(
            "--weights",
            "-w",
            help="Weights directory (relative to <db dir>/models) or LiteLLM model string.",
        ),
    ],
    model_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Backend: sentence_transformers or litellm."),
    ] = "sentence_transformers",
    activate: Annotated[
        bool,
        typer.Option("--activate", help="Activate the new version and re-embed everything."),
    ] = False,
    db: DbOption = None,
) -> None:
    """Register a model version and check that it loads."""
    with session(db, load=False) as app:
        model = app.repo.get_model_by_name(name) or app.add_model(name, model_type)
        with console.status(f"Loading {name}…"):
            version = app.add_model_version(model.id, weights)
        console.print(
            f"[green]✓[/] {model.name} version {version.version} is ready "
            f"({version.dimensions} dimensions)"
        )
        if activate:
            _activate(app, model.id, version.version, model.name)


@model_app.command("list")
def model_list_cmd(db: DbOption = None) -> None:
    """List registered models and their versions."""
    with session(db, load=False) as app:
        models = app.list_models()
        if not models:
            console.print(
                "[yellow]No models registered.[/]\n"
                "  Run:  perceive model add <name> --weights <dir>"
            )
            raise typer.Exit(0)

        active = app.active_model()
        table = Table(title="Models", show_header=True, header_style="bold")
        table.add_column("", width=1)
        table.add_column("Model", style="bold")
        table.add_column("Type")
        table.add_column("Version", justify="right")
        table.add_column("Status")
        table.add_column("Dims", justify="right")
        table.add_column("Weights", style="dim", overflow="fold")
        for model, versions in models:
            if not versions:
                table.add_row("", model.name, model.model_type, "-", "", "", "")
            for v in versions:
                marker = "[green]●[/]" if active and active.key == (model.id, v.version) else ""
                table.add_row(
                    marker,
                    model.name,
                    model.model_type,
                    str(v.version),
                    _STATUS_STYLE[v.status],
                    str(v.dimensions or ""),
                    v.weights_filename,
                )
        console.print(table)


@model_app.command("activate")
def model_activate_cmd(
    name: Annotated[str, typer.Argument(help="Model name.")],
    version: Annotated[
        int | None,
        typer.Option("--version", "-v", help="Version number (default: latest ready)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Make a model version active and embed every item with it."""
    with session(db, load=False) as app:
        model = app.repo.get_model_by_name(name)
        if model is None:
            console.print(err_model_not_found(name))
            raise typer.Exit(1)
        if version is None:
            ready = [v for v in app.repo.list_model_versions(model.id) if v.ready]
            if not ready:
                console.print(
                    f"[red]Error:[/] {name} has no ready version.\n"
                    f"  Run:  perceive model add {name} --weights <dir>"
                )
                raise typer.Exit(1)
            version = ready[-1].version
        _activate(app, model.id, version, model.name)


def _activate(app: Perceive, model_id: int, version: int, name: str) -> None:
    future = app.activate_model(model_id, version)
    with console.status(f"Embedding items with {name} v{version}…"):
        count = future.result()
    console.print(f"[green]✓[/] Active model: {name} v{version} ({count:,} items embedded)")
