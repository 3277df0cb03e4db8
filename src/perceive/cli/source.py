"""perceive source commands.

Commands:
  perceive source add NAME LOCATION   register a filesystem tree or bookmarks file
  perceive source list                show sources with status and item counts
  perceive source remove ID           soft-delete a source and its items
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from perceive.app import parse_source_config
from perceive.cli.common import DbOption, console, session
from perceive.cli.errors import err_source_not_found
from perceive.db.models import CompareStrategy, SourceStatus

source_app = typer.Typer(
    name="source",
    help="Manage sources (add, list, remove).",
    add_completion=False,
)

_STATUS_STYLE = {
    SourceStatus.IDLE: "[green]idle[/]",
    SourceStatus.SYNCING: "[yellow]syncing[/]",
    SourceStatus.ERROR: "[red]error[/]",
}


@source_app.command("add")
def source_add_cmd(
    name: Annotated[str, typer.Argument(help="Display name for the source.")],
    location: Annotated[str, typer.Argument(help="Directory (fs) or Bookmarks file path.")],
    source_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Source type: fs or chromium_bookmarks."),
    ] = "fs",
    glob: Annotated[
        list[str] | None,
        typer.Option("--glob", "-g", help="fs: include pattern (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", "-x", help="fs: exclude pattern (repeatable)."),
    ] = None,
    skip: Annotated[
        list[str] | None,
        typer.Option("--skip", help="chromium_bookmarks: domain to ignore (repeatable)."),
    ] = None,
    config: Annotated[
        str | None,
        typer.Option("--config", help="Extra source config as a JSON object."),
    ] = None,
    strategy: Annotated[
        CompareStrategy,
        typer.Option("--strategy", help="How changed items are detected."),
    ] = CompareStrategy.MTIME_AND_CONTENT,
    interval: Annotated[
        int | None,
        typer.Option("--interval", help="Seconds between automatic syncs (perceive sync --due)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Register a new source. Run perceive sync afterwards to index it."""
    with session(db, load=False) as app:
        source_config = parse_source_config(config)
        if glob:
            source_config["globs"] = list(glob)
        if exclude:
            source_config["exclude"] = list(exclude)
        if skip:
            source_config["skip"] = list(skip)
        source = app.add_source(
            name,
            source_type,
            location,
            config=source_config,
            compare_strategy=strategy,
            index_interval=interval,
        )
    console.print(f"[green]✓[/] Added source [bold]{source.name}[/] (id {source.id})")
    console.print(f"  Run:  perceive sync {source.id}")


@source_app.command("list")
def source_list_cmd(db: DbOption = None) -> None:
    """List all sources."""
    with session(db, load=False) as app:
        sources = app.list_sources()
        if not sources:
            console.print("[yellow]No sources yet.[/]\n  Run:  perceive source add <name> <directory>")
            raise typer.Exit(0)

        table = Table(title="Sources", show_header=True, header_style="bold")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Type")
        table.add_column("Location", overflow="fold")
        table.add_column("Status")
        table.add_column("Items", justify="right")
        table.add_column("Last indexed", style="dim")

        for s in sources:
            status = _STATUS_STYLE[s.status]
            if s.status is SourceStatus.ERROR and s.status_message:
                status += f"\n[dim]{s.status_message}[/]"
            table.add_row(
                str(s.id),
                s.name,
                s.source_type,
                s.location,
                status,
                f"{app.repo.count_items(s.id):,}",
                (s.last_indexed or "never")[:16],
            )
        console.print(table)


@source_app.command("remove")
def source_remove_cmd(
    source_id: Annotated[int, typer.Argument(help="Source id (see perceive source list).")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: DbOption = None,
) -> None:
    """Remove a source and all its items from search."""
    with session(db, load=False) as app:
        source = app.repo.get_source(source_id)
        if source is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)

        count = app.repo.count_items(source_id)
        console.print(f"\nRemove source: [bold]{source.name}[/] ({source.location})")
        console.print(f"  Items: {count:,}")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        removed = app.remove_source(source_id)
    console.print(f"\n[green]✓[/] Removed: {source.name} ({removed:,} items)")
