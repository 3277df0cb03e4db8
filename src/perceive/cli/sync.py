"""perceive sync: run sync passes and wait for them.

  perceive sync ID      one source
  perceive sync --all   every source
  perceive sync --due   sources whose index interval has elapsed

Ctrl-C cancels the running passes; committed items stay committed and the
sources return to idle without advancing their index version.
"""

from __future__ import annotations

from concurrent.futures import Future, wait
from typing import Annotated

import typer
from rich.table import Table

from perceive.app import Perceive
from perceive.cli.common import DbOption, console, session
from perceive.cli.errors import err_source_failed, err_source_not_found
from perceive.sync.engine import SyncStats


def sync_cmd(
    source_id: Annotated[
        int | None,
        typer.Argument(help="Source id to sync (see perceive source list)."),
    ] = None,
    all_sources: Annotated[bool, typer.Option("--all", help="Sync every source.")] = False,
    due: Annotated[bool, typer.Option("--due", help="Sync sources whose interval has elapsed.")] = False,
    db: DbOption = None,
) -> None:
    """Index new and changed items, and drop deleted ones."""
    if source_id is None and not all_sources and not due:
        console.print("[red]Error:[/] Give a source id, --all, or --due.")
        raise typer.Exit(1)

    with session(db) as app:
        if source_id is not None:
            if app.repo.get_source(source_id) is None:
                console.print(err_source_not_found(source_id))
                raise typer.Exit(1)
            passes = {source_id: app.sync_source(source_id)}
        else:
            sources = app.repo.sources_due() if due else app.list_sources()
            passes = {s.id: app.sync_source(s.id) for s in sources}

        if not passes:
            console.print("[dim]Nothing to sync.[/]")
            raise typer.Exit(0)

        try:
            with console.status(f"Syncing {len(passes)} source(s)…"):
                wait(list(passes.values()))
        except KeyboardInterrupt:
            console.print("[yellow]Cancelling…[/]")
            for sid in passes:
                app.cancel_sync(sid)
            wait(list(passes.values()))

        failed = _report(app, passes)
    if failed:
        raise typer.Exit(1)


def _report(app: Perceive, passes: dict[int, Future]) -> int:
    table = Table(title="Sync", show_header=True, header_style="bold")
    table.add_column("Source", style="bold")
    for column in ("Scanned", "New", "Changed", "Unchanged", "Deleted", "Skipped", "Embedded"):
        table.add_column(column, justify="right")
    table.add_column("Result")

    errors: list[str] = []
    for sid, future in passes.items():
        source = app.repo.get_source(sid)
        name = source.name if source else str(sid)
        try:
            stats: SyncStats = future.result()
        except Exception as exc:
            errors.append(err_source_failed(name, str(exc) or type(exc).__name__))
            table.add_row(name, *["-"] * 7, "[red]error[/]")
            continue
        result = "[yellow]cancelled[/]" if stats.cancelled else "[green]✓[/]"
        table.add_row(
            name,
            f"{stats.scanned:,}",
            f"{stats.added:,}",
            f"{stats.changed:,}",
            f"{stats.unchanged:,}",
            f"{stats.deleted:,}",
            f"{stats.skipped:,}",
            f"{stats.embedded:,}",
            result,
        )
    console.print(table)
    for message in errors:
        console.print(message)
    return len(errors)
